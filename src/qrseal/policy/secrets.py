"""Process secrets — master HMAC secret and provider credentials.

Values come from the process environment, optionally seeded from a
``.env`` file via python-dotenv. Secret values never appear in repr()
or in status output; only presence and length are reported.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from qrseal.errors import ConfigurationError


MASTER_SECRET_ENV = "HMAC_MASTER_SECRET"
CREDENTIAL_ENVS = ("QRNG_OUTSHIFT_API_KEY", "ANU_API_KEY", "RANDOM_ORG_API_KEY")


@dataclass(frozen=True)
class Secrets:
    """Read-only view of the secrets this process was started with."""
    master_secret: Optional[str] = field(default=None, repr=False)
    credentials: Mapping[str, str] = field(default_factory=dict, repr=False)

    @classmethod
    def from_environment(
        cls,
        env_file: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> Secrets:
        """Load secrets, reading *env_file* first if it exists.

        Variables already present in the environment win over the file.
        """
        if env_file is not None and Path(env_file).exists():
            load_dotenv(env_file, override=False)
        env = os.environ if environ is None else environ
        return cls(
            master_secret=env.get(MASTER_SECRET_ENV) or None,
            credentials={
                name: env[name] for name in CREDENTIAL_ENVS if env.get(name)
            },
        )

    @property
    def has_master_secret(self) -> bool:
        return bool(self.master_secret)

    def require_master_secret(self) -> str:
        if not self.master_secret:
            raise ConfigurationError(f"{MASTER_SECRET_ENV} missing")
        return self.master_secret

    def credential(self, env_name: str) -> Optional[str]:
        return self.credentials.get(env_name) or None

    def summary(self) -> dict[str, dict[str, object]]:
        """Presence and length of each secret, safe to print."""
        out: dict[str, dict[str, object]] = {
            MASTER_SECRET_ENV: {
                "present": self.has_master_secret,
                "length": len(self.master_secret or ""),
            },
        }
        for name in CREDENTIAL_ENVS:
            value = self.credentials.get(name, "")
            out[name] = {"present": bool(value), "length": len(value)}
        return out
