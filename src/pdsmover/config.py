import os
from dataclasses import dataclass, fields
from typing import Dict, Optional

ENV_PREFIX = "PDSMOVER_"


@dataclass
class MoverConfig:
    """Endpoints and tuning knobs shared by every workflow."""

    entryway_url: str = "https://bsky.social"
    public_api_url: str = "https://public.api.bsky.app"
    plc_directory_url: str = "https://plc.directory"
    doh_url: str = "https://mozilla.cloudflare-dns.com/dns-query"
    # handles under this suffix are resolved through the entryway
    entryway_suffix: str = ".bsky.social"

    page_size: int = 100
    progress_every: int = 10

    timeout: float = 120.0
    max_retries: int = 3
    retry_delay: float = 5.0
    user_agent: str = "pdsmover"

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "MoverConfig":
        """Build a config, overriding defaults with PDSMOVER_* variables."""
        environ = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            if f.type in (int, "int"):
                overrides[f.name] = int(raw)
            elif f.type in (float, "float"):
                overrides[f.name] = float(raw)
            else:
                overrides[f.name] = raw
        return cls(**overrides)

    def is_entryway_handle(self, handle: str) -> bool:
        return handle.lower().endswith(self.entryway_suffix)
