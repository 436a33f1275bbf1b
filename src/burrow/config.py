"""Configuration loader for burrow.

Reads settings from ~/.burrow/config.yaml (or $BURROW_CONFIG, or an explicit
--config path) and merges them over safe defaults.

Supported keys:
- data_dir: root for burrow state (default: ~/.burrow)
- repos_dir: where workspaces are created (default: {data_dir}/repos)
- git_path: git binary (default: 'git')
- clone_strategy: 'full' or 'worktree' (default: 'full')
- auto_delete_corrupted: delete sessions that fail validation (default: true)
- vars: free-form template variables exposed to spawn commands as {{ vars.x }}
- windows: default tmux window set when no rule defines spawn behavior
- rules: per-remote rules (pattern, copy, commands, max_recycled,
  clone_strategy, spawn, batch_spawn, recycle, windows)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from burrow.errors import ConfigError, InvalidInputError
from burrow.rules import compile_pattern, matches_pattern
from burrow.session import CloneStrategy

CONFIG_ENV_VAR = 'BURROW_CONFIG'

DEFAULT_MAX_RECYCLED = 5

DEFAULT_RECYCLE_COMMANDS = [
    'git fetch origin',
    'git checkout -f {{ default_branch }}',
    'git reset --hard origin/{{ default_branch }}',
    'git clean -fd',
]


@dataclass
class WindowConfig:
    """A tmux window template. name, command and dir are rendered per session."""

    name: str
    command: str = ''
    dir: str = ''
    focus: bool = False


@dataclass
class Rule:
    """Settings applied to sessions whose remote matches `pattern`."""

    pattern: str = ''
    copy: List[str] = field(default_factory=list)
    commands: List[str] = field(default_factory=list)
    # None = inherit from earlier rules or the default, 0 = unlimited
    max_recycled: Optional[int] = None
    clone_strategy: Optional[CloneStrategy] = None
    spawn: List[str] = field(default_factory=list)
    batch_spawn: List[str] = field(default_factory=list)
    recycle: List[str] = field(default_factory=list)
    windows: List[WindowConfig] = field(default_factory=list)


@dataclass
class Config:
    data_dir: str
    repos_dir: str
    git_path: str = 'git'
    clone_strategy: CloneStrategy = CloneStrategy.FULL
    auto_delete_corrupted: bool = True
    vars: Dict[str, Any] = field(default_factory=dict)
    windows: List[WindowConfig] = field(default_factory=list)
    rules: List[Rule] = field(default_factory=list)

    @property
    def sessions_file(self) -> Path:
        return Path(self.data_dir) / 'sessions.json'

    @property
    def logs_dir(self) -> Path:
        return Path(self.data_dir) / 'logs'

    @property
    def errors_file(self) -> Path:
        return Path(self.data_dir) / 'errors.jsonl'

    def repo_context_dir(self, owner: str, repo: str) -> str:
        return str(Path(self.data_dir) / 'context' / (owner or '_') / repo)

    def get_max_recycled(self, remote: str) -> int:
        """
        Quota of recycled sessions kept for remote.

        Rules are evaluated in order; the last matching rule that sets
        max_recycled wins. 0 means unlimited.
        """
        result = None
        for rule in self.rules:
            if matches_pattern(rule.pattern, remote) and rule.max_recycled is not None:
                result = rule.max_recycled
        return DEFAULT_MAX_RECYCLED if result is None else result

    def get_recycle_commands(self, remote: str) -> List[str]:
        """Last matching rule with recycle commands wins; otherwise the defaults."""
        result: List[str] = []
        for rule in self.rules:
            if matches_pattern(rule.pattern, remote) and rule.recycle:
                result = rule.recycle
        return list(result or DEFAULT_RECYCLE_COMMANDS)

    def get_clone_strategy(self, remote: str) -> CloneStrategy:
        """Last matching rule with clone_strategy wins; otherwise the global setting."""
        result = self.clone_strategy
        for rule in self.rules:
            if matches_pattern(rule.pattern, remote) and rule.clone_strategy is not None:
                result = rule.clone_strategy
        return result


def _defaults() -> Dict[str, Any]:
    home = Path.home()
    return {
        'data_dir': str(home / '.burrow'),
        'repos_dir': None,
        'git_path': 'git',
        'clone_strategy': 'full',
        'auto_delete_corrupted': True,
        'vars': {},
        'windows': [
            {'name': 'agent', 'command': 'claude', 'focus': True},
            {'name': 'shell'},
        ],
        'rules': [],
    }


def config_path(explicit: Optional[str] = None) -> Path:
    """Resolve the config file: explicit path > $BURROW_CONFIG > ~/.burrow/config.yaml."""
    if explicit:
        return Path(explicit).expanduser()
    env = os.environ.get(CONFIG_ENV_VAR)
    if env:
        return Path(env).expanduser()
    return Path.home() / '.burrow' / 'config.yaml'


def _str_list(value: Any, where: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigError(f"{where}: expected a list of strings")
    return [str(v) for v in value]


def _parse_strategy(value: Any, where: str) -> CloneStrategy:
    try:
        return CloneStrategy.parse(value)
    except InvalidInputError as e:
        raise ConfigError(f"{where}: {e.message}")


def _parse_windows(value: Any, where: str) -> List[WindowConfig]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"{where}: expected a list of windows")

    windows = []
    for i, raw in enumerate(value):
        if not isinstance(raw, dict) or not raw.get('name'):
            raise ConfigError(f"{where}[{i}]: window requires a name")
        windows.append(WindowConfig(
            name=str(raw['name']),
            command=str(raw.get('command') or ''),
            dir=str(raw.get('dir') or ''),
            focus=bool(raw.get('focus', False)),
        ))
    return windows


def _parse_rule(raw: Any, index: int) -> Rule:
    where = f"rules[{index}]"
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}: expected a mapping")

    max_recycled = raw.get('max_recycled')
    if max_recycled is not None:
        if isinstance(max_recycled, bool) or not isinstance(max_recycled, int) or max_recycled < 0:
            raise ConfigError(f"{where}.max_recycled must be a non-negative integer")

    pattern = str(raw.get('pattern') or '')
    try:
        compile_pattern(pattern)
    except InvalidInputError as e:
        raise ConfigError(f"{where}.pattern: {e}")

    strategy = raw.get('clone_strategy')
    return Rule(
        pattern=pattern,
        copy=_str_list(raw.get('copy'), f"{where}.copy"),
        commands=_str_list(raw.get('commands'), f"{where}.commands"),
        max_recycled=max_recycled,
        clone_strategy=_parse_strategy(strategy, f"{where}.clone_strategy") if strategy else None,
        spawn=_str_list(raw.get('spawn'), f"{where}.spawn"),
        batch_spawn=_str_list(raw.get('batch_spawn'), f"{where}.batch_spawn"),
        recycle=_str_list(raw.get('recycle'), f"{where}.recycle"),
        windows=_parse_windows(raw.get('windows'), f"{where}.windows"),
    )


def config_from_dict(data: Dict[str, Any]) -> Config:
    """Build a validated Config from a parsed YAML mapping (merged over defaults)."""
    merged = {**_defaults(), **{k: v for k, v in data.items() if v is not None}}

    data_dir = str(Path(merged['data_dir']).expanduser())
    repos_dir = merged.get('repos_dir') or str(Path(data_dir) / 'repos')

    rules_raw = merged.get('rules') or []
    if not isinstance(rules_raw, list):
        raise ConfigError("rules: expected a list")

    user_vars = merged.get('vars') or {}
    if not isinstance(user_vars, dict):
        raise ConfigError("vars: expected a mapping")

    return Config(
        data_dir=data_dir,
        repos_dir=str(Path(repos_dir).expanduser()),
        git_path=str(merged.get('git_path') or 'git'),
        clone_strategy=_parse_strategy(merged.get('clone_strategy'), 'clone_strategy'),
        auto_delete_corrupted=bool(merged.get('auto_delete_corrupted')),
        vars=dict(user_vars),
        windows=_parse_windows(merged.get('windows'), 'windows'),
        rules=[_parse_rule(raw, i) for i, raw in enumerate(rules_raw)],
    )


def load_config(path: Optional[str] = None) -> Config:
    """
    Load and validate a config file. A missing file yields the defaults.

    Raises:
        ConfigError: if the file is not valid YAML or fails validation
    """
    cfg_path = config_path(path)
    data: Dict[str, Any] = {}
    if cfg_path.exists():
        try:
            loaded = yaml.safe_load(cfg_path.read_text())
        except yaml.YAMLError as e:
            raise ConfigError(f"{cfg_path}: invalid YAML: {e}")
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"{cfg_path}: top level must be a mapping")
        data = loaded or {}

    try:
        return config_from_dict(data)
    except ConfigError as e:
        raise e.add_context(str(cfg_path))

