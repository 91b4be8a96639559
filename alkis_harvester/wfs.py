# -*- coding: utf-8 -*-

"""Paged ``GetFeature`` requests against the NRW ALKIS WFS."""

from __future__ import annotations

import logging
import os
import re
import typing as t
import xml.etree.ElementTree as ET

from dataclasses import dataclass, field

import httpx
from fake_useragent import UserAgent

from alkis_harvester.attributes import MISSING, AttributeValue, classify


WFS_BASE = "https://www.wfs.nrw.de/geobasis/wfs_nw_alkis_vereinfacht"
FEATURE_TYPE = "ave:Flurstueck"
SRS_NAME = "EPSG:4326"
PAGE_SIZE = 1000  # the server may cap this silently
USER_AGENT_FALLBACK = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'

GEMEINDE_PATTERN = re.compile(r"^\d{8}$")


class HarvestError(RuntimeError):
    pass


class FetchError(HarvestError):
    pass


class EnvelopeError(HarvestError):
    pass


@dataclass
class RawFeature:
    attributes: dict[str, AttributeValue] = field(default_factory=dict)
    geometry: t.Optional[ET.Element] = None

    def get(self, name: str) -> AttributeValue:
        return self.attributes.get(name, MISSING)


@dataclass
class Page:
    number_returned: int
    features: list[RawFeature]


def local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def get_user_agent() -> str:
    try:
        return UserAgent().random
    except Exception as error:  # pragma: no cover - network/database errors from fake_useragent
        logging.debug("failed to create random user agent, using fallback: %s", error)
        return USER_AGENT_FALLBACK


def wfs_url() -> str:
    """Endpoint, overridable with ``WFS_URL`` in the environment or the .env file."""

    return os.getenv("WFS_URL") or WFS_BASE


def open_client(timeout: float = 60.0, transport: t.Optional[httpx.BaseTransport] = None) -> httpx.Client:
    return httpx.Client(
        headers={"User-Agent": get_user_agent()},
        timeout=timeout,
        transport=transport,
    )


def build_params(start_index: int, gemeinde: t.Optional[str] = None, page_size: int = PAGE_SIZE) -> dict[str, str]:
    if start_index < 0:
        raise ValueError("start_index cannot be negative")

    if page_size <= 0:
        raise ValueError("page_size must be positive")

    params = {
        "SERVICE": "WFS",
        "VERSION": "2.0.0",
        "REQUEST": "GetFeature",
        "TYPENAMES": FEATURE_TYPE,
        "COUNT": str(page_size),
        "STARTINDEX": str(start_index),
        "SRSNAME": SRS_NAME,
    }

    if gemeinde is not None:
        if not GEMEINDE_PATTERN.match(gemeinde):
            raise ValueError(f"municipality key must have 8 digits: {gemeinde!r}")

        params["CQL_FILTER"] = f"gmdschl='{gemeinde}'"

    return params


def parse_feature(element: ET.Element) -> RawFeature:
    feature = RawFeature()

    for child in element:
        name = local_name(child.tag)

        if name == "geometrie":
            feature.geometry = child
            continue

        feature.attributes[name] = classify(child.text)

    return feature


def parse_envelope(content: bytes) -> Page:
    """Parse one ``wfs:FeatureCollection`` response body."""

    try:
        root = ET.fromstring(content)
    except ET.ParseError as error:
        raise EnvelopeError(f"response is not valid XML: {error}") from error

    if local_name(root.tag) != "FeatureCollection":
        raise EnvelopeError(f"could not parse FeatureCollection, got {local_name(root.tag)}")

    number_returned = root.get("numberReturned", "0")

    try:
        returned = int(number_returned)
    except ValueError as error:
        raise EnvelopeError(f"invalid numberReturned: {number_returned!r}") from error

    features: list[RawFeature] = []

    for member in root:
        if local_name(member.tag) != "member":
            continue

        flurstueck = next((child for child in member if local_name(child.tag) == "Flurstueck"), None)

        if flurstueck is None:
            logging.debug("skipping member without Flurstueck")
            continue

        features.append(parse_feature(flurstueck))

    return Page(returned, features)


def fetch_page(
    client: httpx.Client,
    start_index: int,
    gemeinde: t.Optional[str] = None,
    page_size: int = PAGE_SIZE,
    url: t.Optional[str] = None,
) -> Page:
    params = build_params(start_index, gemeinde, page_size)
    url = url or wfs_url()

    logging.info("fetching startIndex=%s", start_index)

    try:
        response = client.get(url, params=params)
        response.raise_for_status()
    except httpx.HTTPStatusError as error:
        raise FetchError(f"HTTP {error.response.status_code}: {error.response.text[:200]}") from error
    except httpx.RequestError as error:
        raise FetchError(f"request to {url} failed: {error}") from error

    page = parse_envelope(response.content)

    logging.debug("numberReturned=%s, parsed %s feature(s)", page.number_returned, len(page.features))

    return page
