"""Per-device reconciliation rules.

A rule compares the attributes a device reported with its desired state and
builds one corrective command per mismatch. Rules live in a registry keyed by
device identifier, so supporting a new device means registering a rule.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from pyreconcile.models.command import Command
from pyreconcile.models.desired_state import DesiredState

_logger = logging.getLogger(__name__)

CommandBuilder = Callable[[str, bool | str], Command]


def led_command(led_id: int) -> CommandBuilder:
    """Structured ``TurnLedOn``/``TurnLedOff`` command for multi-LED boards."""

    def build(device_id: str, desired: bool | str) -> Command:
        name = "TurnLedOn" if desired else "TurnLedOff"
        return Command.structured(device_id, name, {"ledId": led_id})

    return build


def switch_command(name: str) -> CommandBuilder:
    """Flat ``<name>:on`` / ``<name>:off`` command."""

    def build(device_id: str, desired: bool | str) -> Command:
        return Command.text(device_id, f"{name}:{'on' if desired else 'off'}")

    return build


def text_command(prefix: str = "text") -> CommandBuilder:
    """Flat ``text:<value>`` command for LCD displays.

    Devices split the command on every ``:`` and show only the second field,
    so a value containing ``:`` is displayed truncated and never matches.
    """

    def build(device_id: str, desired: bool | str) -> Command:
        if isinstance(desired, str) and ":" in desired:
            _logger.warning(
                "Desired text %r for %s contains ':'; the device will only show %r",
                desired,
                device_id,
                desired.split(":", 1)[0],
            )
        return Command.text(device_id, f"{prefix}:{desired}")

    return build


def values_match(reported: Any, desired: Any) -> bool:
    """Strict equality: ``True`` never matches ``1`` and ``"1"`` never matches ``1``."""
    return type(reported) is type(desired) and reported == desired


@dataclass(frozen=True)
class AttributeCheck:
    """One reported field compared against one desired attribute."""

    reported: str
    desired: str
    label: str
    build: CommandBuilder


@dataclass(frozen=True)
class Mismatch:
    device_id: str
    label: str
    attribute: str
    reported: Any
    desired: bool | str


@dataclass(frozen=True)
class Correction:
    mismatch: Mismatch
    command: Command


class ReconciliationRule(Protocol):
    """Anything that can turn a reported body into corrections."""

    def corrections(
        self,
        device_id: str,
        reported: Mapping[str, Any],
        desired: DesiredState,
    ) -> list[Correction]:
        ...


@dataclass(frozen=True)
class DeviceRule:
    """Table-driven rule: a fixed list of attribute checks.

    Fields missing from the reported body, or attributes missing from the
    desired state, are skipped; absence alone never triggers a correction.
    """

    kind: str
    checks: tuple[AttributeCheck, ...]

    def corrections(
        self,
        device_id: str,
        reported: Mapping[str, Any],
        desired: DesiredState,
    ) -> list[Correction]:
        result: list[Correction] = []
        for check in self.checks:
            if check.reported not in reported or check.desired not in desired.attributes:
                continue
            value = reported[check.reported]
            target = desired.attributes[check.desired]
            if values_match(value, target):
                continue
            mismatch = Mismatch(
                device_id=device_id,
                label=check.label,
                attribute=check.desired,
                reported=value,
                desired=target,
            )
            result.append(Correction(mismatch=mismatch, command=check.build(device_id, target)))
        return result


HUZZAH_RULE = DeviceRule(
    kind="huzzah",
    checks=(
        AttributeCheck(reported="Led1", desired="led1", label="Led1", build=led_command(1)),
        AttributeCheck(reported="Led2", desired="led2", label="Led2", build=led_command(2)),
    ),
)

EDISON_RULE = DeviceRule(
    kind="edison",
    checks=(
        AttributeCheck(reported="greenLed", desired="greenLed", label="Green Led", build=switch_command("greenLed")),
        AttributeCheck(reported="redLed", desired="redLed", label="Red Led", build=switch_command("redLed")),
        AttributeCheck(reported="lcdText", desired="lcdText", label="LCD Text", build=text_command()),
    ),
)

RPI2_RULE = DeviceRule(
    kind="rpi2",
    checks=(
        AttributeCheck(reported="Led", desired="Led", label="Led", build=switch_command("led")),
        AttributeCheck(reported="LcdText", desired="LcdText", label="LCD Text", build=text_command()),
    ),
)


class RuleRegistry:
    """Device identifier → reconciliation rule."""

    def __init__(self, rules: Mapping[str, ReconciliationRule] | None = None) -> None:
        self._rules: dict[str, ReconciliationRule] = dict(rules or {})

    @classmethod
    def default(cls) -> RuleRegistry:
        return cls({"huzzah": HUZZAH_RULE, "rpi2": RPI2_RULE, "edison": EDISON_RULE})

    def register(self, device_id: str, rule: ReconciliationRule) -> None:
        self._rules[device_id] = rule

    def register_many(self, device_ids: Iterable[str], rule: ReconciliationRule) -> None:
        for device_id in device_ids:
            self.register(device_id, rule)

    def unregister(self, device_id: str) -> None:
        self._rules.pop(device_id, None)

    def get(self, device_id: str) -> ReconciliationRule | None:
        return self._rules.get(device_id)

    @property
    def device_ids(self) -> list[str]:
        return list(self._rules)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._rules

    def __len__(self) -> int:
        return len(self._rules)
