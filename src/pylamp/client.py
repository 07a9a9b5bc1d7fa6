"""High-level async client wiring transport, reconciler, activity log and access."""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
from typing import Any

from pylamp._firebase import firestore_client, initialize_firebase
from pylamp._redact import redact_for_log
from pylamp.access.identity import FirebaseIdentityProvider, IdentityProvider
from pylamp.access.policy import AccessPolicy
from pylamp.access.profiles import FirestoreProfileStore, InMemoryProfileStore, ProfileStore
from pylamp.access.sessions import SessionManager, UserSession
from pylamp.audit.base import AuditLog
from pylamp.audit.firestore import FirestoreAuditLog
from pylamp.audit.memory import InMemoryAuditLog
from pylamp.config import LampConfig, TransportMode
from pylamp.exceptions import AccessDeniedError, LampAuthenticationError, LampError
from pylamp.models.command import CommandReceipt
from pylamp.models.device import DeviceKey, LampState
from pylamp.models.identity import Role, UserProfile
from pylamp.models.log_entry import LogEntry
from pylamp.registry import DeviceRegistry
from pylamp.state.events import DeviceSyncState, StateChange
from pylamp.state.reconciler import StateReconciler
from pylamp.transport import ConnectionStatus, Transport, create_transport

_logger = logging.getLogger(__name__)


class LampClient:
    """Owns exactly one transport and everything built on top of it.

    Usage::

        async with LampClient(LampConfig.from_env()) as client:
            client.reconciler.add_listener(print)
            await client.set_lamp("kitchen", LampState.ON, session=session)

    Collaborators not passed in are created from the config: Firestore and
    Firebase Authentication when ``firebase_enabled`` is set, in-memory
    stores (and no sign-in) otherwise.
    """

    def __init__(
        self,
        config: LampConfig,
        *,
        registry: DeviceRegistry | None = None,
        transport: Transport | None = None,
        audit_log: AuditLog | None = None,
        profiles: ProfileStore | None = None,
        identity_provider: IdentityProvider | None = None,
    ) -> None:
        self._config = config
        self._registry = registry or DeviceRegistry.default(topic_base=config.mqtt_topic_base)
        self._transport = transport
        self._audit_log = audit_log
        self._profiles = profiles
        self._identity_provider = identity_provider
        self._reconciler: StateReconciler | None = None
        self._sessions: SessionManager | None = None
        self._policy: AccessPolicy | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> LampClient:
        _logger.debug("Starting lamp client config=%s", redact_for_log(dataclasses.asdict(self._config)))
        self._build_collaborators()
        transport = self._require(self._transport)
        reconciler = self._require(self._reconciler)
        await transport.connect()
        await reconciler.start()
        if self._config.mode is TransportMode.DIRECT:
            await reconciler.refresh()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._reconciler is not None:
            await self._reconciler.stop()
        if self._transport is not None:
            await self._transport.disconnect()

    def _build_collaborators(self) -> None:
        if self._config.firebase_enabled and (
            self._audit_log is None or self._profiles is None or self._identity_provider is None
        ):
            app = initialize_firebase(self._config)
            db = firestore_client(app)
            if self._audit_log is None:
                self._audit_log = FirestoreAuditLog(db, collection=self._config.log_collection)
            if self._profiles is None:
                self._profiles = FirestoreProfileStore(db, collection=self._config.users_collection)
            if self._identity_provider is None:
                self._identity_provider = FirebaseIdentityProvider(app)

        if self._audit_log is None:
            self._audit_log = InMemoryAuditLog()
        if self._profiles is None:
            self._profiles = InMemoryProfileStore()
        if self._transport is None:
            self._transport = create_transport(self._config, self._registry)

        self._reconciler = StateReconciler(
            self._transport,
            self._registry,
            audit_log=self._audit_log,
            pending_timeout=self._config.pending_timeout,
        )
        self._policy = AccessPolicy(self._profiles, default_role=Role(self._config.default_role))
        self._sessions = SessionManager(self._identity_provider, self._profiles, self._policy)

    @staticmethod
    def _require(value: Any) -> Any:
        if value is None:
            raise LampError("Client not initialized. Use 'async with LampClient(...) as client:'")
        return value

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> LampConfig:
        return self._config

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    @property
    def transport(self) -> Transport:
        transport: Transport = self._require(self._transport)
        return transport

    @property
    def reconciler(self) -> StateReconciler:
        reconciler: StateReconciler = self._require(self._reconciler)
        return reconciler

    @property
    def sessions(self) -> SessionManager:
        sessions: SessionManager = self._require(self._sessions)
        return sessions

    @property
    def audit_log(self) -> AuditLog:
        audit_log: AuditLog = self._require(self._audit_log)
        return audit_log

    @property
    def profiles(self) -> ProfileStore:
        profiles: ProfileStore = self._require(self._profiles)
        return profiles

    @property
    def connection_status(self) -> ConnectionStatus:
        return self.transport.connection_status

    # ------------------------------------------------------------------
    # Lamp control
    # ------------------------------------------------------------------

    def _check_control(self, session: UserSession | None) -> None:
        if session is None and not self._config.allow_anonymous_control:
            raise LampAuthenticationError("Sign in to control lamps")

    async def set_lamp(
        self,
        device: str | DeviceKey,
        state: LampState | str,
        *,
        session: UserSession | None = None,
    ) -> CommandReceipt:
        self._check_control(session)
        actor = session.identity if session is not None else None
        return await self.reconciler.request(device, state, actor=actor)

    async def toggle_lamp(self, device: str | DeviceKey, *, session: UserSession | None = None) -> CommandReceipt:
        self._check_control(session)
        actor = session.identity if session is not None else None
        return await self.reconciler.toggle(device, actor=actor)

    async def wait_connected(self, timeout: float) -> bool:
        """Wait until the transport reports ``connected``; ``False`` on timeout."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while self.connection_status is not ConnectionStatus.CONNECTED:
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(0.05)
        return True

    async def wait_settled(self, device: str | DeviceKey, timeout: float) -> DeviceSyncState:
        """Wait until *device* has no pending command, or *timeout* elapses."""
        key = self._registry.resolve(device)
        settled = asyncio.Event()

        def _on_change(change: StateChange) -> None:
            if change.device is key and not change.current.is_pending:
                settled.set()

        remove = self.reconciler.add_listener(_on_change)
        try:
            if self.reconciler.state(key).is_pending:
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(settled.wait(), timeout)
        finally:
            remove()
        return self.reconciler.state(key)

    async def read_lamp(self, device: str | DeviceKey) -> LampState:
        """Probe the transport for *device* and reconcile the answer."""
        key = self._registry.resolve(device)
        observed = await self.transport.read(key)
        self.reconciler.apply_confirmation(key, observed)
        return self.reconciler.displayed(key)

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    @staticmethod
    def _admin(session: UserSession | None) -> UserSession:
        if session is None:
            raise LampAuthenticationError("Sign in required")
        AccessPolicy.require_admin(session.role)
        return session

    async def list_log(self, session: UserSession | None) -> list[LogEntry]:
        self._admin(session)
        return await self.audit_log.list_entries()

    async def delete_log_entry(self, session: UserSession | None, entry_id: str) -> None:
        self._admin(session)
        await self.audit_log.delete(entry_id)

    async def clear_log(self, session: UserSession | None) -> int:
        self._admin(session)
        return await self.audit_log.delete_all()

    async def list_users(self, session: UserSession | None) -> list[UserProfile]:
        self._admin(session)
        return await self.profiles.list_profiles()

    async def set_user_role(self, session: UserSession | None, uid: str, role: Role | str) -> UserProfile:
        admin = self._admin(session)
        if uid == admin.identity.uid:
            raise AccessDeniedError("Admins cannot change their own role")
        profile = await self.profiles.set_role(uid, Role(role))
        if self._policy is not None:
            self._policy.forget(uid)
        _logger.info("Role of %s set to %s", uid, profile.role)
        return profile

    async def delete_user(self, session: UserSession | None, uid: str) -> None:
        admin = self._admin(session)
        if uid == admin.identity.uid:
            raise AccessDeniedError("Admins cannot delete themselves")
        await self.profiles.delete(uid)
        self.sessions.sign_out_user(uid)
