"""
Credential storage backed by the OS secret store (Windows Credential Manager
through keyring). The password is only fetched inside unlocked(), where it is
held in a ScopedSecret whose bytearray buffer is zeroed when the block exits.
Python cannot wipe the str copies that keyring returns or that are handed to a
child process, so this narrows how long plaintext is around; it does not
guarantee it is gone from memory.
"""

import getpass
import logging
from contextlib import contextmanager

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from .config import CREDENTIAL_SERVICE
from .errors import CredentialError

logger = logging.getLogger(__name__)

USERNAME_KEY = "__username__"


class ScopedSecret:
    def __init__(self, username: str, password: str):
        self.username = username
        self._buffer = bytearray(password.encode("utf-8"))
        self._cleared = False

    @property
    def password(self) -> str:
        if self._cleared:
            raise CredentialError("Secret has already been cleared")
        return self._buffer.decode("utf-8")

    def clear(self):
        for i in range(len(self._buffer)):
            self._buffer[i] = 0
        self._cleared = True

    @property
    def cleared(self) -> bool:
        return self._cleared

    def __repr__(self):
        return f"ScopedSecret(username={self.username!r}, password=***)"


class CredentialStore:
    def __init__(self, service: str = CREDENTIAL_SERVICE):
        self.service = service

    def username(self):
        try:
            return keyring.get_password(self.service, USERNAME_KEY)
        except KeyringError as e:
            raise CredentialError(f"Could not read credential store: {e}")

    def has(self) -> bool:
        username = self.username()
        if not username:
            return False
        try:
            return keyring.get_password(self.service, username) is not None
        except KeyringError as e:
            raise CredentialError(f"Could not read credential store: {e}")

    def save(self, username: str, password: str):
        if not username or not password:
            raise CredentialError("Username and password must not be empty")
        try:
            keyring.set_password(self.service, USERNAME_KEY, username)
            keyring.set_password(self.service, username, password)
        except KeyringError as e:
            raise CredentialError(f"Could not save credential: {e}")
        logger.info(f"Stored credential for {username} in the OS credential store")

    def forget(self) -> bool:
        username = self.username()
        if not username:
            return False
        for key in (username, USERNAME_KEY):
            try:
                keyring.delete_password(self.service, key)
            except PasswordDeleteError:
                pass
        logger.info(f"Removed stored credential for {username}")
        return True

    @contextmanager
    def unlocked(self):
        username = self.username()
        password = None
        if username:
            try:
                password = keyring.get_password(self.service, username)
            except KeyringError as e:
                raise CredentialError(f"Could not read credential store: {e}")
        if not username or password is None:
            raise CredentialError(f"No stored credential for {self.service}")

        secret = ScopedSecret(username, password)
        del password
        try:
            yield secret
        finally:
            secret.clear()


def obtain_credentials(store: CredentialStore, interactive: bool = True,
                       prompt=input, prompt_password=getpass.getpass):
    """Makes sure the store holds a credential, prompting for one when allowed."""
    if store.has():
        logger.info(f"Using stored credential for {store.username()}")
        return
    if not interactive:
        raise CredentialError("No stored credential and prompting is disabled")

    username = prompt("Cloud drive username (e-mail): ").strip()
    password = prompt_password("Cloud drive password: ")
    store.save(username, password)
