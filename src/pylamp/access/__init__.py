"""Identity, roles and sessions."""

from pylamp.access.identity import FirebaseIdentityProvider, IdentityProvider, identity_from_claims
from pylamp.access.policy import AccessPolicy
from pylamp.access.profiles import FirestoreProfileStore, InMemoryProfileStore, ProfileStore
from pylamp.access.sessions import SessionListener, SessionManager, UserSession

__all__ = [
    "AccessPolicy",
    "FirebaseIdentityProvider",
    "FirestoreProfileStore",
    "IdentityProvider",
    "InMemoryProfileStore",
    "ProfileStore",
    "SessionListener",
    "SessionManager",
    "UserSession",
    "identity_from_claims",
]
