# -*- coding: utf-8 -*-

"""Attribute values as delivered by the WFS.

The upstream XML mixes numeric and textual identifiers (``gmdschl`` looks like
a number but carries leading zeros, ``flstkennz`` is padded text). Every leaf
is classified once into ``Number``, ``Text`` or ``Missing`` and the normalizer
coerces explicitly from there.
"""

from __future__ import annotations

import logging
import math
import typing as t

from dataclasses import dataclass


@dataclass(frozen=True)
class Number:
    value: float
    literal: str


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class Missing:
    pass


MISSING = Missing()

AttributeValue = t.Union[Number, Text, Missing]


def classify(text: t.Optional[str]) -> AttributeValue:
    if text is None:
        return MISSING

    value = text.strip()

    if not value:
        return MISSING

    try:
        number = float(value)
    except ValueError:
        return Text(value)

    if not math.isfinite(number):
        return Text(value)

    return Number(number, value)


def as_text(value: AttributeValue) -> t.Optional[str]:
    """Text form of an identifier; numbers keep their literal digits."""

    if isinstance(value, Number):
        return value.literal
    if isinstance(value, Text):
        return value.value
    return None


def as_float(value: AttributeValue) -> t.Optional[float]:
    if isinstance(value, Number):
        return value.value
    if isinstance(value, Text):
        # decimal comma
        try:
            number = float(value.value.replace(",", "."))
        except ValueError:
            logging.debug("failed to parse float from %s", value.value)
            return None

        if math.isfinite(number):
            return number

        logging.debug("ignoring non-finite value %s", value.value)
    return None
