"""
Digest delivery feature package.

Everything needed to turn a user's "call-me" senders into a digest and get
it to their phone lives here: domain models, repositories, provider
adapters, services and the API router.
"""

from .api.router import router as digest_router  # noqa: F401
from .api.dependencies import DigestDeliveryServices, build_services, get_services  # noqa: F401
