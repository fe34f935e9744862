"""
Login, remembered login and logout.

Accounts live in users/{name}. Logging in with an unknown name creates
a student account. Passwords are stored as werkzeug hashes; accounts
created before hashing still hold the plain password, which is
accepted once and replaced with a hash.
"""

import logging
from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

from src.core.errors import ParameterValidationError

from .context import TrainingLogContext
from .documents import SERVER_TIMESTAMP, USERS, DocumentStore
from .models import CalendarSelection, Role, Session
from .records import RecordsSync
from .utils import LOGIN_CREDENTIALS_KEY, clear_saved_login, load_saved_login, save_login

logger = logging.getLogger(__name__)

_HASH_PREFIXES = ("pbkdf2:", "scrypt:")


class InvalidCredentialsError(ParameterValidationError):
    """Raised when the password does not match the stored account."""
    pass


def is_password_hash(value: str) -> bool:
    return value.startswith(_HASH_PREFIXES) and value.count("$") >= 2


def verify_password(stored: str, password: str) -> bool:
    if is_password_hash(stored):
        return check_password_hash(stored, password)
    return stored == password


class AuthService:

    def __init__(self, ctx: TrainingLogContext, records: RecordsSync) -> None:
        self._ctx = ctx
        self._records = records

    async def login(self, user_id: str, password: str, remember: bool = False) -> Session:
        """
        Log in, creating a student account for a new name.

        Raises ParameterValidationError for blank input,
        StoreUnavailableError when there is no document store and
        InvalidCredentialsError for a wrong password.
        """
        user_id = (user_id or "").strip()
        password = (password or "").strip()
        if not user_id or not password:
            raise ParameterValidationError("Name and password are both required")

        documents = self._ctx.require_store()
        is_coach = await self._authenticate(documents, user_id, password, create_missing=True)
        session = await self._start_session(user_id, password, is_coach)

        if remember:
            save_login(self._ctx.local, user_id, password, is_coach)
        else:
            clear_saved_login(self._ctx.local)

        logger.info("Login succeeded", extra={"user": user_id, "coach": is_coach})
        return session

    async def auto_login(self) -> Optional[Session]:
        """
        Restore the remembered login if the account still accepts it.

        A remembered password that no longer matches is forgotten.
        """
        saved = load_saved_login(self._ctx.local)
        if saved is None:
            return None
        documents = self._ctx.store_or_none("auto_login")
        if documents is None:
            return None

        try:
            is_coach = await self._authenticate(documents, saved.name, saved.password, create_missing=False)
        except InvalidCredentialsError:
            logger.info("Remembered login rejected, clearing it", extra={"user": saved.name})
            clear_saved_login(self._ctx.local)
            return None
        if is_coach is None:
            return None

        logger.info("Auto-login succeeded", extra={"user": saved.name})
        return await self._start_session(saved.name, saved.password, is_coach)

    def logout(self) -> None:
        """Stop every live query, forget the remembered login and reset state."""
        user = self._ctx.state.state.current_user
        self._ctx.subscriptions.release_all()
        clear_saved_login(self._ctx.local)
        self._ctx.local.remove_item(LOGIN_CREDENTIALS_KEY)
        self._ctx.state.reset_session()
        logger.info("Logged out", extra={"user": user})

    async def _authenticate(
        self,
        documents: DocumentStore,
        user_id: str,
        password: str,
        create_missing: bool,
    ) -> Optional[bool]:
        """
        Check the password and return whether the account is a coach.

        Returns None for a missing account when create_missing is False.
        """
        doc = await documents.get(USERS, user_id)
        if doc is None:
            if not create_missing:
                return None
            await documents.set(USERS, user_id, {
                "password": generate_password_hash(password),
                "isCoach": False,
                "createdAt": SERVER_TIMESTAMP,
            })
            logger.info("Created student account", extra={"user": user_id})
            return False

        stored = str(doc.data.get("password", ""))
        if not verify_password(stored, password):
            logger.warning("Wrong password", extra={"user": user_id})
            raise InvalidCredentialsError("Incorrect password")

        if not is_password_hash(stored):
            await documents.update(USERS, user_id, {"password": generate_password_hash(password)})
            logger.info("Upgraded stored password to a hash", extra={"user": user_id})

        return bool(doc.data.get("isCoach", False))

    async def _start_session(self, user_id: str, password: str, is_coach: bool) -> Session:
        session = Session(
            user_id=user_id,
            role=Role.COACH if is_coach else Role.STUDENT,
            password=password,
        )
        today = self._ctx.today()
        self._ctx.state.update(
            session=session,
            # coaches start on "all dates"
            selected_date=None if is_coach else today.isoformat(),
            calendar=CalendarSelection.for_day(today),
        )
        await self._records.migrate_local_storage_to_firestore(user_id)
        await self._records.load_pinned_exercises(user_id)
        return session
