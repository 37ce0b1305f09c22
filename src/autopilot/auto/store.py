"""Rule store — validated rule collection, automation config, presets and import/export."""

from __future__ import annotations

import dataclasses
import json
import re
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from autopilot.auto import matcher
from autopilot.auto.presets import (
    create_rule_from_preset,
    default_presets,
    get_pack,
    get_preset,
)
from autopilot.db.models import (
    ACTION_TYPES,
    PATTERN_MODES,
    RULE_CATEGORIES,
    Action,
    AutomationConfig,
    AutomationRule,
    Pattern,
    _now_iso,
)
from autopilot.utils.errors import RuleImportError, RuleValidationError
from autopilot.utils.logger import get_logger

logger = get_logger("autopilot.auto.store")

EXPORT_VERSION = 1
IMPORT_MODES = ("replace", "merge")


def rule_problems(rule: AutomationRule) -> list[str]:
    """List everything wrong with ``rule``, compiling its regexes on the way.

    Valid regexes end up in the matcher cache; invalid ones are reported.

    Returns:
        Human-readable problems; empty when the rule is valid.
    """
    problems: list[str] = []
    if not isinstance(rule.name, str) or not rule.name.strip():
        problems.append("name is required")
    if not isinstance(rule.enabled, bool):
        problems.append("enabled must be true or false")
    if rule.category not in RULE_CATEGORIES:
        problems.append(f"unknown category {rule.category!r}")
    if not rule.patterns:
        problems.append("at least one pattern is required")
    if not rule.actions:
        problems.append("at least one action is required")

    for i, pattern in enumerate(rule.patterns, 1):
        if pattern.mode not in PATTERN_MODES:
            problems.append(f"pattern {i}: unknown mode {pattern.mode!r}")
            continue
        for flag in ("case_sensitive", "negate"):
            if not isinstance(getattr(pattern, flag), bool):
                problems.append(f"pattern {i}: {flag} must be true or false")
        if not isinstance(pattern.value, str) or not pattern.value:
            problems.append(f"pattern {i}: value is empty")
            continue
        if pattern.mode == "regex":
            try:
                matcher.compile_pattern(pattern)
            except re.error as e:
                problems.append(f"pattern {i}: invalid regex {pattern.value!r} ({e})")

    for i, action in enumerate(rule.actions, 1):
        if action.type not in ACTION_TYPES:
            problems.append(f"action {i}: unknown type {action.type!r}")
        if not isinstance(action.value, str):
            problems.append(f"action {i}: value must be a string")
        elif action.type in ("send_keys", "tmux_command", "signal") and not action.value.strip():
            problems.append(f"action {i}: {action.type} needs a value")
        if not isinstance(action.delay_ms, int) or action.delay_ms < 0:
            problems.append(f"action {i}: delay must be a non-negative integer")

    cooldown = rule.cooldown_seconds
    if isinstance(cooldown, bool) or not isinstance(cooldown, (int, float)) or cooldown < 0:
        problems.append("cooldown must be a non-negative number")
    cap = rule.max_triggers_per_hour
    if cap is not None and (isinstance(cap, bool) or not isinstance(cap, int) or cap < 0):
        problems.append("max triggers per hour must be a non-negative integer")
    if isinstance(rule.priority, bool) or not isinstance(rule.priority, int):
        problems.append("priority must be an integer")
    if not _string_list(rule.session_states):
        problems.append("session states must be a list of non-empty strings")
    if not _string_list(rule.session_filter):
        problems.append("session filter must be a list of non-empty glob patterns")
    return problems


def _string_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(s, str) and s for s in value)


def validate_rule(rule: AutomationRule) -> None:
    """Raise ``RuleValidationError`` unless ``rule`` can be saved."""
    problems = rule_problems(rule)
    if problems:
        raise RuleValidationError(problems, rule_name=rule.name)


def _coerce_rule(data: AutomationRule | dict[str, Any]) -> AutomationRule:
    if isinstance(data, AutomationRule):
        return data
    try:
        return AutomationRule.from_dict(data)
    except (TypeError, ValueError, AttributeError) as e:
        raise RuleValidationError([f"malformed rule data ({e})"]) from e


def _coerce_patterns(items: list[Pattern | dict[str, Any]]) -> list[Pattern]:
    return [p if isinstance(p, Pattern) else Pattern.from_dict(p) for p in items]


def _coerce_actions(items: list[Action | dict[str, Any]]) -> list[Action]:
    return [a if isinstance(a, Action) else Action.from_dict(a) for a in items]


class RuleStore:
    """In-memory rule list mirrored to a persistence backend.

    The rule list keeps insertion order, which the evaluator uses to break
    priority ties.

    Args:
        backend: Persistence collaborator (``autopilot.db.queries`` satisfies
            it). None keeps everything in memory.
        limiter: Rate limiter to reconfigure on config changes and to clear
            when a rule is deleted.
        defaults: Config used when nothing is stored and on reset.
        install_defaults: Install default-enabled presets on first run.
    """

    def __init__(
        self,
        backend=None,
        limiter=None,
        defaults: AutomationConfig | None = None,
        install_defaults: bool = True,
    ) -> None:
        self.backend = backend
        self.limiter = limiter
        self.defaults = defaults or AutomationConfig()
        self.install_defaults = install_defaults
        self._config = dataclasses.replace(self.defaults)
        self._rules: list[AutomationRule] = []
        self._invalid: set[str] = set()
        self._config_listeners: list[Callable[[AutomationConfig], Awaitable[None]]] = []

    # ── Loading ──

    async def load(self) -> None:
        """Load config and rules from the backend.

        Stored rules that no longer validate are kept (so they can be fixed)
        but their regexes stay uncompiled, which makes them never match. On
        first run the default-enabled presets are installed.
        """
        stored_config = None
        rules: list[AutomationRule] = []
        if self.backend:
            stored_config = await self.backend.get_config()
            rules = await self.backend.get_all_rules()

        if stored_config is not None:
            self._config = AutomationConfig.from_dict(stored_config, base=self.defaults)
        else:
            self._config = dataclasses.replace(self.defaults)

        self._invalid.clear()
        for rule in rules:
            problems = rule_problems(rule)
            if problems:
                self._invalid.add(rule.id)
                logger.warning(
                    f"Stored rule '{rule.name}' ({rule.id}) is invalid and will not match: "
                    f"{'; '.join(problems)}"
                )
        self._rules = rules
        self._sync_cache()
        self._apply_config()

        first_run = stored_config is None and not rules
        if first_run:
            await self._save_config()
            if self.install_defaults:
                for preset in default_presets():
                    await self.install_preset(preset.id)
                logger.info(f"First run: installed {len(self._rules)} default presets")

        self._sync_cache()
        logger.info(
            f"Loaded {len(self._rules)} rules "
            f"({len(self.enabled_rules())} enabled), automation "
            f"{'on' if self._config.enabled else 'off'}"
        )

    # ── Queries ──

    def get_rule(self, rule_id: str) -> AutomationRule | None:
        for rule in self._rules:
            if rule.id == rule_id:
                return rule
        return None

    def list_rules(self, category: str | None = None) -> list[AutomationRule]:
        if category is None:
            return list(self._rules)
        return [r for r in self._rules if r.category == category]

    def enabled_rules(self) -> list[AutomationRule]:
        """Enabled rules in store order, excluding stored rules that failed validation."""
        return [r for r in self._rules if r.enabled and r.id not in self._invalid]

    def is_valid(self, rule_id: str) -> bool:
        return rule_id not in self._invalid

    def find_by_preset(self, preset_id: str) -> AutomationRule | None:
        for rule in self._rules:
            if rule.preset_id == preset_id:
                return rule
        return None

    def __len__(self) -> int:
        return len(self._rules)

    # ── CRUD ──

    async def create_rule(self, data: AutomationRule | dict[str, Any]) -> AutomationRule:
        """Validate and add a new rule.

        Args:
            data: A rule, or a rule dict (camelCase or snake_case keys). A dict
                without a cooldown gets the configured default cooldown.

        Returns:
            The stored rule.

        Raises:
            RuleValidationError: If the rule is malformed or its id is taken.
        """
        rule = _coerce_rule(data)
        if isinstance(data, dict) and not any(
            k in data for k in ("cooldownSeconds", "cooldown_seconds")
        ):
            rule.cooldown_seconds = self._config.default_cooldown_seconds
        if self.get_rule(rule.id) is not None:
            raise RuleValidationError([f"rule id {rule.id!r} already exists"], rule.name)
        validate_rule(rule)

        now = _now_iso()
        rule.created_at = now
        rule.updated_at = now
        self._rules.append(rule)
        await self._persist(rule)
        logger.info(f"Created rule '{rule.name}' ({rule.id})")
        return rule

    async def update_rule(self, rule_id: str, **changes: Any) -> AutomationRule | None:
        """Apply field changes to a rule, re-validating the result.

        Returns:
            The updated rule, or None if no rule has ``rule_id``.

        Raises:
            RuleValidationError: If the changed rule is invalid; the stored
                rule is left untouched.
        """
        current = self.get_rule(rule_id)
        if current is None:
            return None
        changes.pop("id", None)
        changes.pop("created_at", None)
        if "patterns" in changes:
            changes["patterns"] = _coerce_patterns(changes["patterns"])
        if "actions" in changes:
            changes["actions"] = _coerce_actions(changes["actions"])
        try:
            updated = dataclasses.replace(current, **changes)
        except TypeError as e:
            raise RuleValidationError([str(e)], current.name) from e
        validate_rule(updated)

        updated.updated_at = _now_iso()
        self._rules[self._rules.index(current)] = updated
        self._invalid.discard(rule_id)
        await self._persist(updated)
        self._sync_cache()
        logger.info(f"Updated rule '{updated.name}' ({rule_id})")
        return updated

    async def delete_rule(self, rule_id: str) -> bool:
        """Delete a rule and its trigger history.

        Returns:
            True if a rule was deleted, False if not found.
        """
        rule = self.get_rule(rule_id)
        if rule is None:
            return False
        self._rules.remove(rule)
        self._invalid.discard(rule_id)
        if self.backend:
            await self.backend.delete_rule(rule_id)
        if self.limiter:
            self.limiter.forget(rule_id)
        self._sync_cache()
        logger.info(f"Deleted rule '{rule.name}' ({rule_id})")
        return True

    async def toggle_rule(self, rule_id: str) -> AutomationRule | None:
        rule = self.get_rule(rule_id)
        if rule is None:
            return None
        return await self.update_rule(rule_id, enabled=not rule.enabled)

    async def clone_rule(self, rule_id: str) -> AutomationRule | None:
        """Copy a rule under a new id; the copy is not tied to any preset."""
        rule = self.get_rule(rule_id)
        if rule is None:
            return None
        data = rule.to_dict()
        for item in data["patterns"] + data["actions"]:
            item.pop("id")
        data.pop("id")
        data["name"] = f"{rule.name} (Copy)"
        data["presetId"] = None
        return await self.create_rule(data)

    async def reorder_rules(self, rule_ids: list[str]) -> None:
        """Put the listed rules first, in the given order.

        Rules missing from ``rule_ids`` keep their relative order after them.
        Unknown ids are ignored.
        """
        by_id = {r.id: r for r in self._rules}
        ordered = [by_id.pop(i) for i in rule_ids if i in by_id]
        ordered.extend(r for r in self._rules if r.id in by_id)
        self._rules = ordered
        if self.backend:
            await self.backend.replace_rules(self._rules)

    # ── Presets ──

    async def install_preset(
        self, preset_id: str, enabled: bool | None = None
    ) -> AutomationRule:
        """Instantiate a preset as a rule; returns the existing rule if installed.

        Raises:
            KeyError: If no preset has ``preset_id``.
        """
        existing = self.find_by_preset(preset_id)
        if existing is not None:
            return existing
        preset = get_preset(preset_id)
        if preset is None:
            raise KeyError(f"Unknown preset: {preset_id}")
        rule = await self.create_rule(create_rule_from_preset(preset, enabled=enabled))
        logger.info(f"Installed preset {preset_id}")
        return rule

    async def remove_preset(self, preset_id: str) -> bool:
        rule = self.find_by_preset(preset_id)
        if rule is None:
            return False
        return await self.delete_rule(rule.id)

    async def install_pack(
        self, pack_id: str, enabled: bool | None = None
    ) -> list[AutomationRule]:
        """Install every preset of a pack.

        Args:
            pack_id: Pack identifier.
            enabled: Force the enabled flag of newly installed rules. When None,
                a rule is enabled only if both the pack and the preset are.

        Raises:
            KeyError: If no pack has ``pack_id``.
        """
        pack = get_pack(pack_id)
        if pack is None:
            raise KeyError(f"Unknown preset pack: {pack_id}")
        rules = []
        for preset in pack.presets:
            flag = enabled
            if flag is None:
                flag = pack.enabled_by_default and preset.enabled
            rules.append(await self.install_preset(preset.id, enabled=flag))
        logger.info(f"Installed pack {pack_id} ({len(rules)} rules)")
        return rules

    async def reset_presets(self) -> list[AutomationRule]:
        """Remove every preset-derived rule and reinstall the default presets."""
        for rule in [r for r in self._rules if r.preset_id]:
            await self.delete_rule(rule.id)
        return [await self.install_preset(p.id) for p in default_presets()]

    # ── Config ──

    @property
    def config(self) -> AutomationConfig:
        return self._config

    def on_config_change(
        self, callback: Callable[[AutomationConfig], Awaitable[None]]
    ) -> None:
        """Register ``async callback(config)``, awaited after every config change."""
        self._config_listeners.append(callback)

    async def update_config(self, **changes: Any) -> AutomationConfig:
        """Change config fields and persist the result.

        Raises:
            ValueError: If a limit is negative or a flag is not a bool.
        """
        try:
            updated = dataclasses.replace(self._config, **changes)
        except TypeError as e:
            raise ValueError(str(e)) from e
        if not isinstance(updated.enabled, bool) or not isinstance(updated.debug_logging, bool):
            raise ValueError("enabled and debugLogging must be true or false")
        if (
            updated.max_actions_per_minute < 0
            or updated.global_cooldown_seconds < 0
            or updated.default_cooldown_seconds < 0
            or updated.max_activity_events < 1
        ):
            raise ValueError(f"Invalid automation config: {updated.to_dict()}")
        self._config = updated
        await self._config_changed()
        return updated

    async def toggle_automation(self) -> bool:
        """Flip the master switch; returns the new state."""
        await self.update_config(enabled=not self._config.enabled)
        logger.info(f"Automation {'enabled' if self._config.enabled else 'disabled'}")
        return self._config.enabled

    async def reset_config(self) -> AutomationConfig:
        self._config = dataclasses.replace(self.defaults)
        await self._config_changed()
        return self._config

    # ── Import / export ──

    def export_document(self) -> dict[str, Any]:
        return {
            "version": EXPORT_VERSION,
            "rules": [r.to_dict() for r in self._rules],
            "config": self._config.to_dict(),
            "exportedAt": datetime.now(timezone.utc).isoformat(),
        }

    def export_json(self, indent: int = 2) -> str:
        return json.dumps(self.export_document(), indent=indent, ensure_ascii=False)

    async def import_document(
        self, document: dict[str, Any] | str, mode: str = "replace"
    ) -> list[AutomationRule]:
        """Import rules (and config, when present) from an export document.

        Every rule is validated before anything changes; one invalid rule
        rejects the whole import.

        Args:
            document: Export document as a dict or JSON string.
            mode: ``'replace'`` swaps the whole rule list, ``'merge'`` upserts
                by rule id and keeps the other rules.

        Returns:
            The imported rules.

        Raises:
            RuleImportError: If the document is malformed or a rule is invalid.
        """
        if mode not in IMPORT_MODES:
            raise RuleImportError(f"Unknown import mode {mode!r}")
        if isinstance(document, str):
            try:
                document = json.loads(document)
            except ValueError as e:
                raise RuleImportError(f"Import document is not valid JSON: {e}") from e
        if not isinstance(document, dict) or not isinstance(document.get("rules"), list):
            raise RuleImportError("Import document must be an object with a 'rules' list")
        version = document.get("version", EXPORT_VERSION)
        if version != EXPORT_VERSION:
            raise RuleImportError(f"Unsupported export version {version!r}")

        imported: list[AutomationRule] = []
        problems: list[str] = []
        for i, item in enumerate(document["rules"], 1):
            if not isinstance(item, dict):
                problems.append(f"rule {i}: not an object")
                continue
            try:
                rule = _coerce_rule(item)
            except RuleValidationError as e:
                problems.append(f"rule {i}: {e}")
                continue
            for problem in rule_problems(rule):
                problems.append(f"rule {i} ({rule.name or rule.id}): {problem}")
            imported.append(rule)
        ids = [r.id for r in imported]
        if len(ids) != len(set(ids)):
            problems.append("duplicate rule ids in document")

        config = None
        raw_config = document.get("config")
        if raw_config is not None:
            if not isinstance(raw_config, dict):
                problems.append("config must be an object")
            else:
                try:
                    config = AutomationConfig.from_dict(raw_config, base=self.defaults)
                except (TypeError, ValueError) as e:
                    problems.append(f"config: {e}")
        if problems:
            self._sync_cache()
            raise RuleImportError("Import rejected: " + "; ".join(problems))

        if mode == "replace":
            for rule in self._rules:
                if self.limiter:
                    self.limiter.forget(rule.id)
            self._rules = imported
            self._invalid.clear()
            if self.backend:
                await self.backend.replace_rules(self._rules)
        else:
            for rule in imported:
                self._invalid.discard(rule.id)
                current = self.get_rule(rule.id)
                if current is None:
                    self._rules.append(rule)
                else:
                    self._rules[self._rules.index(current)] = rule
                await self._persist(rule)

        if config is not None:
            self._config = config
            await self._config_changed()
        self._sync_cache()
        logger.info(f"Imported {len(imported)} rules ({mode})")
        return imported

    # ── Internals ──

    async def _persist(self, rule: AutomationRule) -> None:
        if self.backend:
            await self.backend.save_rule(rule, position=self._rules.index(rule))

    async def _save_config(self) -> None:
        if self.backend:
            await self.backend.save_config(self._config.to_dict())

    async def _config_changed(self) -> None:
        self._apply_config()
        await self._save_config()
        for callback in self._config_listeners:
            await callback(self._config)

    def _apply_config(self) -> None:
        if self.limiter:
            self.limiter.configure(self._config)

    def _sync_cache(self) -> None:
        matcher.retain_only(
            p for r in self._rules if r.id not in self._invalid for p in r.patterns
        )
