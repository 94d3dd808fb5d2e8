"""Bridge configuration.

Accounts live in `$DTBRIDGE_HOME/config.yaml` (default `~/.dtbridge/config.yaml`):

    channels:
      dingtalk:
        accounts:
          default:
            enabled: true
            client_id: dingxxxx
            client_secret_env: DINGTALK_CLIENT_SECRET
            robot_code: dingxxxx

Secrets may be given inline or through `*_env` fields naming an environment
variable. camelCase keys (clientId, clientSecret, robotCode) are accepted too.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml  # type: ignore

from ..contracts.v1 import AccountCredential
from ..paths import default_config_path
from ..util.conv import coerce_bool, is_env_var_name
from .errors import ConfigError

DEFAULT_ACCOUNT_ID = "default"


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the host config document. A missing file is an empty config."""
    p = path or default_config_path()
    if not p.exists():
        return {}
    try:
        doc = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid config file {p}: {e}") from e
    if not isinstance(doc, dict):
        raise ConfigError(f"Invalid config file {p}: top level must be a mapping")
    return doc


def _channel_section(cfg: Dict[str, Any]) -> Dict[str, Any]:
    channels = cfg.get("channels") if isinstance(cfg, dict) else None
    section = channels.get("dingtalk") if isinstance(channels, dict) else None
    return section if isinstance(section, dict) else {}


def _accounts_section(cfg: Dict[str, Any]) -> Dict[str, Any]:
    accounts = _channel_section(cfg).get("accounts")
    return accounts if isinstance(accounts, dict) else {}


def _pick(raw: Dict[str, Any], snake: str, camel: str) -> str:
    """Resolve a value from inline snake/camel keys or their `*_env` variants."""
    for key in (snake, camel):
        env_raw = str(raw.get(f"{key}_env") or raw.get(f"{key}Env") or "").strip()
        if env_raw:
            if is_env_var_name(env_raw):
                value = os.environ.get(env_raw, "").strip()
                if value:
                    return value
            else:
                # Common misconfig: raw secret pasted into the *_env field.
                return env_raw
        value = str(raw.get(key) or "").strip()
        if value:
            return value
    return ""


def account_from_dict(account_id: str, raw: Dict[str, Any]) -> AccountCredential:
    robot_code = _pick(raw, "robot_code", "robotCode")
    return AccountCredential(
        account_id=account_id,
        client_id=_pick(raw, "client_id", "clientId"),
        client_secret=_pick(raw, "client_secret", "clientSecret"),
        robot_code=robot_code or None,
        enabled=coerce_bool(raw.get("enabled"), default=True),
    )


def get_account(cfg: Dict[str, Any], account_id: str = DEFAULT_ACCOUNT_ID) -> Optional[AccountCredential]:
    raw = _accounts_section(cfg).get(account_id)
    if not isinstance(raw, dict):
        return None
    return account_from_dict(account_id, raw)


def list_account_ids(cfg: Dict[str, Any]) -> List[str]:
    """Configured account ids, skipping accounts with `enabled: false`."""
    ids: List[str] = []
    for account_id, raw in _accounts_section(cfg).items():
        if not isinstance(raw, dict):
            continue
        if coerce_bool(raw.get("enabled"), default=True):
            ids.append(str(account_id))
    return ids


def resolve_account(cfg: Dict[str, Any], account_id: str = DEFAULT_ACCOUNT_ID) -> Dict[str, Any]:
    account = get_account(cfg, account_id)
    if account is None:
        return {"account_id": account_id}
    return {
        "account_id": account_id,
        "enabled": account.enabled,
        "configured": account.configured,
    }


def require_credentials(cfg: Dict[str, Any], account_id: str) -> AccountCredential:
    """Account credentials for starting a connection; ConfigError if incomplete."""
    account = get_account(cfg, account_id)
    if account is None or not account.configured:
        raise ConfigError(f"Account {account_id}: missing clientId or clientSecret")
    return account
