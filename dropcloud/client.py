"""DigitalOcean API gateway using the pydo SDK.

Every call is synchronous and every failure surfaces as ``DigitalOceanError``.
List calls follow the API's pagination until the last page.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from loguru import logger
from pydo import Client

from dropcloud.exceptions import DigitalOceanError
from dropcloud.types import Droplet

log = logger.bind(component="client")

PAGE_SIZE = 200


def get_client(token: str) -> Client:
    return Client(token=token)


def _is_not_found(e: Exception) -> bool:
    return getattr(e, "status_code", None) == 404


def _has_next_page(result: dict[str, Any], page: int, per_page: int, received: int) -> bool:
    pages = (result.get("links") or {}).get("pages") or {}
    if pages:
        return "next" in pages
    total = (result.get("meta") or {}).get("total")
    return total is not None and received > 0 and page * per_page < int(total)


class DigitalOceanGateway:
    """Thin, paginating wrapper over ``pydo.Client`` for one API token.

    Example:
        gateway = DigitalOceanGateway(token)
        for droplet in gateway.list_droplets():
            print(droplet.name, droplet.status)
    """

    def __init__(self, token: str, client: Client | None = None) -> None:
        self.token = token
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_client(self.token)
        return self._client

    def _paginate(self, call: Callable[..., dict[str, Any]], key: str, **params: Any) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            result = call(page=page, per_page=PAGE_SIZE, **params)
            chunk = result.get(key, []) or []
            items.extend(chunk)
            if not _has_next_page(result, page, PAGE_SIZE, len(chunk)):
                return items
            page += 1

    # =========================================================================
    # Droplets
    # =========================================================================

    def list_droplets(self) -> list[Droplet]:
        """All droplets on the account, across every page."""
        try:
            raw = self._paginate(self.client.droplets.list, "droplets")
        except Exception as e:
            raise DigitalOceanError(f"Failed to list droplets: {e}") from e
        return [Droplet.from_api(d) for d in raw]

    def get_droplet(self, droplet_id: int) -> Droplet | None:
        """Fetch one droplet. Returns None if it does not exist."""
        try:
            result = self.client.droplets.get(droplet_id=droplet_id)
        except Exception as e:
            if _is_not_found(e):
                return None
            raise DigitalOceanError(f"Failed to get droplet {droplet_id}: {e}") from e
        droplet = result.get("droplet")
        return Droplet.from_api(droplet) if droplet else None

    def create_droplet(
        self,
        *,
        name: str,
        image: str,
        size: str,
        region: str,
        ssh_key_id: int,
        tags: list[str] | None = None,
        user_data: str | None = None,
        monitoring: bool = False,
        private_networking: bool = False,
    ) -> Droplet:
        body: dict[str, Any] = {
            "name": name,
            "region": region,
            "size": size,
            "image": parse_image(image),
            "ssh_keys": [ssh_key_id],
            "monitoring": monitoring,
            "private_networking": private_networking,
        }
        if tags:
            body["tags"] = tags
        if user_data:
            body["user_data"] = user_data

        log.info("Creating droplet {name} ({size} in {region})", name=name, size=size, region=region)
        try:
            result = self.client.droplets.create(body=body)
        except Exception as e:
            raise DigitalOceanError(f"Failed to create droplet {name}: {e}") from e
        droplet = result.get("droplet") if result else None
        if not droplet:
            raise DigitalOceanError(f"Failed to create droplet {name}: empty response")
        return Droplet.from_api(droplet)

    def delete_droplet(self, droplet_id: int) -> None:
        try:
            self.client.droplets.destroy(droplet_id=droplet_id)
        except Exception as e:
            raise DigitalOceanError(f"Failed to delete droplet {droplet_id}: {e}") from e

    # =========================================================================
    # Account Resources
    # =========================================================================

    def list_ssh_keys(self) -> list[dict[str, Any]]:
        try:
            return self._paginate(self.client.ssh_keys.list, "ssh_keys")
        except Exception as e:
            raise DigitalOceanError(f"Failed to list SSH keys: {e}") from e

    def list_sizes(self) -> list[dict[str, Any]]:
        """Available sizes, smallest memory first."""
        try:
            sizes = self._paginate(self.client.sizes.list, "sizes")
        except Exception as e:
            raise DigitalOceanError(f"Failed to list sizes: {e}") from e
        return sorted(sizes, key=lambda s: s.get("memory", 0))

    def list_images(self, *, private: bool | None = None, type: str | None = None) -> dict[str, dict[str, Any]]:
        """Images keyed by a display name, sorted case-insensitively.

        Backups are prefixed with ``(Backup) `` and user snapshots (snapshots
        without a slug) with ``(Snapshot) ``.
        """
        params: dict[str, Any] = {}
        if private is not None:
            params["private"] = private
        if type:
            params["type"] = type
        try:
            images = self._paginate(self.client.images.list, "images", **params)
        except Exception as e:
            raise DigitalOceanError(f"Failed to list images: {e}") from e

        keyed = {
            f"{_image_prefix(img)}{img.get('distribution', '')} {img.get('name', '')}": img
            for img in images
        }
        return dict(sorted(keyed.items(), key=lambda kv: kv[0].lower()))

    def list_regions(self) -> list[dict[str, Any]]:
        """Regions flagged available, sorted by name."""
        try:
            regions = self._paginate(self.client.regions.list, "regions")
        except Exception as e:
            raise DigitalOceanError(f"Failed to list regions: {e}") from e
        return sorted((r for r in regions if r.get("available")), key=lambda r: r.get("name", ""))

    def test_connection(self) -> dict[str, Any]:
        """Fetch the account behind the token; raises if the token is unusable."""
        try:
            result = self.client.account.get()
        except Exception as e:
            raise DigitalOceanError(f"Failed to connect to DigitalOcean: {e}") from e
        return result.get("account", {}) if result else {}


# =============================================================================
# Utility Functions
# =============================================================================


def _is_user_snapshot(image: dict[str, Any]) -> bool:
    return image.get("type") == "snapshot" and not image.get("slug")


def _image_prefix(image: dict[str, Any]) -> str:
    if image.get("type") == "backup":
        return "(Backup) "
    if _is_user_snapshot(image):
        return "(Snapshot) "
    return ""


def image_identifier(image: dict[str, Any]) -> str:
    """Identifier to create droplets from: the slug of public snapshots, else the id.

    Backups and user snapshots have no slug, so they are addressed by id.
    """
    if image.get("type") == "snapshot" and image.get("slug"):
        return image["slug"]
    return str(image["id"])


def parse_image(value: str | int) -> str | int:
    """Numeric image references become ids, anything else is a slug."""
    if isinstance(value, int):
        return value
    text = value.strip()
    return int(text) if text.isdigit() else text


def size_label(size: dict[str, Any]) -> str:
    """Human description of a size, e.g. ``$6/month ($0.00893/hour): 1gb RAM, ...``."""
    memory = int(size.get("memory", 0))
    units = "mb"
    if memory >= 1024:
        memory //= 1024
        units = "gb"
    return (
        f"${size.get('price_monthly')}/month (${size.get('price_hourly')}/hour): "
        f"{memory}{units} RAM, {size.get('vcpus')} CPU, {size.get('disk')}gb Disk, "
        f"{size.get('transfer')}tb Transfer"
    )


__all__ = [
    "DigitalOceanGateway",
    "get_client",
    "image_identifier",
    "parse_image",
    "size_label",
]
