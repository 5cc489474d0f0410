"""Credentials provider: turn the committed encrypted key into a usable login.

The JWT signing key is stored encrypted in the repository. The password
comes from a CI secret variable and is handed to openssl through its
environment (``-pass env:NAME``), so it never appears on a command line.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from relpipe.core.config import OrgConfig
from relpipe.core.result import Err, Ok, Result
from relpipe.platform.process import run as run_process
from relpipe.pipeline.errors import AuthenticationFailed
from relpipe.pipeline.model import Credentials
from relpipe.pipeline.timeouts import PLATFORM_TIMEOUT_SECONDS


def decrypt_key(
    *,
    workspace_root: Path,
    encrypted: Path,
    output: Path,
    password_env: str,
    account: str,
    environ: Mapping[str, str] | None = None,
) -> Result[Path, AuthenticationFailed]:
    env = dict(os.environ if environ is None else environ)
    if not env.get(password_env):
        return Err(
            AuthenticationFailed(
                account=account,
                hint=f"set ${password_env} to decrypt {encrypted}",
            )
        )

    output.parent.mkdir(parents=True, exist_ok=True)
    cmd = [
        "openssl",
        "enc",
        "-aes-256-cbc",
        "-md",
        "sha256",
        "-salt",
        "-d",
        "-pbkdf2",
        "-in",
        str(encrypted),
        "-out",
        str(output),
        "-pass",
        f"env:{password_env}",
    ]
    result = run_process(cmd, cwd=workspace_root, env=env, timeout=PLATFORM_TIMEOUT_SECONDS)
    if isinstance(result, Err):
        e = result.error
        return Err(
            AuthenticationFailed(
                account=account,
                hint=e.stderr.strip() or f"openssl could not decrypt {encrypted}",
            )
        )
    return Ok(output)


def load_credentials(
    *,
    workspace_root: Path,
    org: OrgConfig,
    environ: Mapping[str, str] | None = None,
) -> Result[Credentials, AuthenticationFailed]:
    """Resolve the login for ``org``, decrypting its key when an encrypted copy exists.

    A plain key file already on disk is used as-is when there is nothing to
    decrypt.
    """
    if not org.username or not org.client_id:
        return Err(
            AuthenticationFailed(
                account=org.username,
                hint="username and client_id are required",
            )
        )

    key_file = workspace_root / org.key_file
    encrypted = workspace_root / org.encrypted_key_file

    if encrypted.is_file():
        decrypted = decrypt_key(
            workspace_root=workspace_root,
            encrypted=encrypted,
            output=key_file,
            password_env=org.key_password_env,
            account=org.username,
            environ=environ,
        )
        if isinstance(decrypted, Err):
            return decrypted
    elif not key_file.is_file():
        return Err(
            AuthenticationFailed(
                account=org.username,
                hint=f"no key found: {org.key_file} or {org.encrypted_key_file}",
            )
        )

    return Ok(Credentials(username=org.username, client_id=org.client_id, key_file=key_file))
