"""Access control module.

Decides who may use which content, and through which channel:
- AccessResolver: ownership, purchase, subscription claim, student via teacher
- AdminOverridePolicy: admin bypass and anonymous admin tokens
- Fact provider protocols implemented by the storage modules

Routers and services are imported from their submodules to keep package
imports free of cycles.
"""

from .errors import AccessControlError, AccessEvaluationError
from .models import AccessType, EntityRef, EntityType, RequestContext, Subject


__all__ = [
    "AccessControlError",
    "AccessEvaluationError",
    "AccessType",
    "EntityRef",
    "EntityType",
    "RequestContext",
    "Subject",
]
