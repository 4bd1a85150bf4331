"""Pre-flight check for the SoundNet API environment.

Run before (re)starting the service:

* ``check`` loads ``AppSettings`` from the given ``.env`` file and applies the
  cross-field rules pydantic cannot express on a single field (redirect URI
  scheme, scopes, Firestore project selection, retry and TTL bounds).
* ``record`` does the same and stores a SHA256 baseline of the file.
* ``verify`` does the same and fails when the file no longer matches the
  baseline, e.g. after a deploy overwrote the Spotify client secret.

Example::

    python -m scripts.check_env record --env-file /srv/soundnet/.env \
        --hash-file /srv/soundnet/.env.sha256
    python -m scripts.check_env verify --env-file /srv/soundnet/.env \
        --hash-file /srv/soundnet/.env.sha256
"""

from __future__ import annotations

import argparse
import hashlib
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from soundnet.core.config import AppSettings, _load_env_file

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_CHECKSUM_ERROR = 3
EXIT_RUNTIME_ERROR = 5


def _digest(env_file: Path) -> str:
    return hashlib.sha256(env_file.read_bytes()).hexdigest()


def _settings_problems(settings: AppSettings) -> List[str]:
    """Cross-field checks pydantic cannot express on a single field."""
    problems: List[str] = []
    if "://" not in settings.spotify.redirect_uri:
        problems.append(
            f"SPOTIFY_REDIRECT_URI {settings.spotify.redirect_uri!r} has no scheme."
        )
    if not settings.oauth.scopes:
        problems.append("OAUTH_SCOPES must name at least one scope.")
    if settings.oauth.state_ttl_seconds <= 0:
        problems.append("OAUTH_STATE_TTL must be positive.")
    if settings.retry.attempts < 1:
        problems.append("SOUNDNET_RETRY_ATTEMPTS must be at least 1.")
    firebase = settings.firebase
    if settings.storage.document_backend == "firestore" and not (
        firebase.project_id or firebase.credentials_file
    ):
        problems.append(
            "SOUNDNET_DOCUMENT_BACKEND=firestore needs FIREBASE_PROJECT_ID "
            "or FIREBASE_CREDENTIALS_FILE."
        )
    if firebase.credentials_file and not Path(firebase.credentials_file).exists():
        problems.append(
            f"FIREBASE_CREDENTIALS_FILE {firebase.credentials_file} does not exist."
        )
    return problems


def _load_settings(env_file: Path) -> AppSettings:
    _load_env_file(str(env_file))
    settings = AppSettings()  # type: ignore[call-arg]
    if not settings.security.token_encryption_secret:
        print(
            "warning: TOKEN_ENCRYPTION_SECRET is unset; stored tokens fall back "
            "to a key derived from SPOTIFY_CLIENT_SECRET.",
            file=sys.stderr,
        )
    return settings


def _record(env_file: Path, hash_file: Path) -> int:
    digest = _digest(env_file)
    hash_file.write_text(f"{digest}\n", encoding="utf-8")
    print(f"Baseline {digest} written to {hash_file}")
    return EXIT_OK


def _verify(env_file: Path, hash_file: Path) -> int:
    if not hash_file.exists():
        print(
            f"No baseline at {hash_file}; run 'record' first.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    baseline = hash_file.read_text(encoding="utf-8").strip()
    current = _digest(env_file)
    if baseline != current:
        print(
            f"{env_file} changed since the baseline was recorded\n"
            f"  baseline: {baseline}\n"
            f"  current:  {current}",
            file=sys.stderr,
        )
        return EXIT_CHECKSUM_ERROR

    print(f"{env_file} matches its baseline.")
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="check_env",
        description="Validate SoundNet settings and detect .env drift.",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    for name, summary, needs_hash in (
        ("check", "validate settings only", False),
        ("record", "validate settings and write the checksum baseline", True),
        ("verify", "validate settings and compare against the baseline", True),
    ):
        command = commands.add_parser(name, help=summary)
        command.add_argument("--env-file", type=Path, default=Path(".env"))
        if needs_hash:
            command.add_argument("--hash-file", type=Path, required=True)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    env_file: Path = args.env_file

    if not env_file.exists():
        print(f"Environment file {env_file} does not exist.", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    try:
        settings = _load_settings(env_file)
    except ValidationError as exc:
        print(f"Settings failed validation:\n{exc.json(indent=2)}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR
    except Exception as exc:  # pylint: disable=broad-except
        print(f"Could not load settings: {exc}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    problems = _settings_problems(settings)
    if problems:
        print("Settings loaded but are inconsistent:", file=sys.stderr)
        for problem in problems:
            print(f"  - {problem}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR

    if args.command == "record":
        return _record(env_file, args.hash_file)
    if args.command == "verify":
        return _verify(env_file, args.hash_file)
    print("Settings OK.")
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
