from __future__ import annotations

import json
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any


class VKError(RuntimeError):
    pass


class VKTokenInvalid(VKError):
    pass


@dataclass(frozen=True)
class VKUser:
    id: str
    first_name: str
    last_name: str
    email: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class VKClient:
    base_url: str = "https://api.vk.com/method"
    api_version: str = "5.131"
    timeout_seconds: int = 10

    def request_json(self, method: str, *, params: dict[str, Any]) -> dict[str, Any]:
        query = dict(params)
        query["v"] = self.api_version
        url = self.base_url.rstrip("/") + "/" + method + "?" + urllib.parse.urlencode(
            {k: v for k, v in query.items() if v is not None}
        )
        req = urllib.request.Request(url, method="GET")
        req.add_header("Accept", "application/json")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            try:
                body = e.read().decode("utf-8", errors="ignore")
            except Exception:
                body = ""
            raise VKError(f"HTTP {e.code} from VK: {body[:300]}") from e
        except (urllib.error.URLError, TimeoutError) as e:
            raise VKError(f"VK request failed: {e}") from e

        try:
            data = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise VKError(f"Invalid JSON from VK ({method})") from e
        if not isinstance(data, dict):
            raise VKError(f"Unexpected VK response ({method})")

        # VK reports API errors with HTTP 200 and an "error" object.
        err = data.get("error")
        if err:
            code = err.get("error_code") if isinstance(err, dict) else None
            msg = err.get("error_msg") if isinstance(err, dict) else str(err)
            if code == 5:
                raise VKTokenInvalid(f"VK rejected access token: {msg}")
            raise VKError(f"VK API error {code}: {msg}")
        return data

    def get_current_user(self, access_token: str, *, email: str | None = None) -> VKUser:
        """Resolve the owner of `access_token` via users.get."""
        j = self.request_json("users.get", params={"access_token": access_token})
        users = j.get("response") or []
        if not isinstance(users, list) or not users or not isinstance(users[0], dict):
            raise VKError("VK users.get returned no user")
        u = users[0]
        if u.get("id") is None:
            raise VKError("VK users.get returned a user without id")
        return VKUser(
            id=str(u["id"]),
            first_name=str(u.get("first_name") or ""),
            last_name=str(u.get("last_name") or ""),
            email=email,
        )


def vk_client_from_config(config: dict) -> VKClient:
    return VKClient(
        base_url=config.get("VK_API_BASE_URL") or "https://api.vk.com/method",
        api_version=config.get("VK_API_VERSION") or "5.131",
        timeout_seconds=int(config.get("VK_TIMEOUT_SECONDS") or 10),
    )
