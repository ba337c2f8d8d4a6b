"""Configuration management."""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from issue_router.core.entities import (
    DuplicateMethod,
    DuplicatePolicy,
    Priority,
    ProjectRef,
    RouteAction,
    RoutingRule,
    RuleCondition,
)
from issue_router.core.errors import ConfigError
from issue_router.core.usage_monitor import UsageLimits

ENVIRONMENTS = ("development", "staging", "production")

DEFAULT_CONFIG_LOCATIONS = (
    Path("config") / "routing.yml",
    Path("routing.yml"),
)

_REPO_RE = re.compile(r"^[\w.-]+/[\w.-]+$")
_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class DefaultsConfig:
    """Where issues go when nothing else decides."""
    repo: str = ""
    labels: list[str] = field(default_factory=list)
    project: Optional[ProjectRef] = None


@dataclass
class ClaudeConfig:
    """Claude API settings."""
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 1024
    temperature: float = 0.1
    timeout: float = 30.0
    base_url: str = "https://api.anthropic.com/v1"


@dataclass
class GitHubConfig:
    """GitHub REST/GraphQL settings."""
    api_url: str = "https://api.github.com"
    max_attempts: int = 3
    initial_retry_delay: float = 1.0
    timeout: float = 30.0


@dataclass
class PathsConfig:
    """Path settings."""
    history_dir: Path = Path(".routing-history")


@dataclass
class Settings:
    """Application settings."""

    # API Keys (from environment only)
    github_token: Optional[str] = None
    anthropic_api_key: str = ""

    router_repo: Optional[str] = None
    config_path: Optional[Path] = None

    # Config sections
    defaults: DefaultsConfig = field(default_factory=DefaultsConfig)
    rules: list[RoutingRule] = field(default_factory=list)
    claude: ClaudeConfig = field(default_factory=ClaudeConfig)
    usage: UsageLimits = field(default_factory=UsageLimits)
    duplicate_detection: DuplicatePolicy = field(default_factory=DuplicatePolicy)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)

    @property
    def default_repo(self) -> str:
        return self.defaults.repo

    @property
    def default_labels(self) -> list[str]:
        return self.defaults.labels

    @property
    def project(self) -> Optional[ProjectRef]:
        return self.defaults.project

    @property
    def ai_enabled(self) -> bool:
        return bool(self.anthropic_api_key)

    @property
    def history_dir(self) -> Path:
        return self.paths.history_dir


def _snake(key: str) -> str:
    """Accept the camelCase keys of the legacy YAML format."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _normalize_keys(section: Any) -> dict:
    if not isinstance(section, dict):
        return {}
    return {_snake(str(key)): value for key, value in section.items()}


def _merge(base: dict, override: dict) -> dict:
    """Deep merge two configuration mappings."""
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def _string_list(value: Any, where: str, errors: list[str]) -> list[str]:
    """Flatten a string, a list of strings or a list of string lists."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        errors.append(f"{where}: expected a list of strings")
        return []

    flat: list[str] = []
    for entry in value:
        if isinstance(entry, list):
            flat.extend(str(item) for item in entry)
        elif isinstance(entry, (str, int, float)):
            flat.append(str(entry))
        else:
            errors.append(f"{where}: unsupported entry {entry!r}")
    return flat


def _check_repo(repo: Any, where: str, errors: list[str]) -> str:
    if not repo:
        errors.append(f"{where} is required")
        return ""
    if not isinstance(repo, str) or not _REPO_RE.match(repo):
        errors.append(f"{where}: invalid repository '{repo}', expected owner/name")
        return str(repo)
    return repo


def _parse_priority(value: Any, where: str, errors: list[str]) -> Priority:
    if value is None:
        return Priority.MEDIUM
    try:
        return Priority(str(value).lower())
    except ValueError:
        errors.append(f"{where}: unknown priority '{value}'")
        return Priority.MEDIUM


def _compile_patterns(values: list[str], where: str, errors: list[str]) -> tuple:
    compiled = []
    for pattern in values:
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE))
        except re.error as e:
            errors.append(f"{where}: invalid regex '{pattern}': {e}")
    return tuple(compiled)


def _parse_project(raw: Any, where: str, errors: list[str]) -> Optional[ProjectRef]:
    if not raw:
        return None
    project = _normalize_keys(raw)
    owner = project.get("owner") or project.get("org") or project.get("user")
    owner_type = project.get("owner_type") or ("user" if project.get("user") else "organization")
    try:
        number = int(project.get("number"))
    except (TypeError, ValueError):
        errors.append(f"{where}.number must be an integer")
        return None
    if not owner:
        errors.append(f"{where}.owner is required")
        return None
    if owner_type not in ("organization", "user"):
        errors.append(f"{where}.owner_type must be 'organization' or 'user'")
        return None
    return ProjectRef(owner=str(owner), number=number, owner_type=owner_type)


def build_rules(rules_config: Any, errors: list[str]) -> list[RoutingRule]:
    """Normalize rule configs and compile regex patterns.

    Problems are appended to ``errors`` so that every broken rule is reported
    at once.
    """
    if rules_config is None:
        return []
    if not isinstance(rules_config, list):
        errors.append("rules: expected a list")
        return []

    rules: list[RoutingRule] = []
    for index, raw in enumerate(rules_config):
        where = f"rules[{index}]"
        if not isinstance(raw, dict):
            errors.append(f"{where}: expected a mapping")
            continue
        if not raw.get("enabled", True):
            continue

        when = _normalize_keys(raw.get("when"))
        route = _normalize_keys(raw.get("route"))

        condition = RuleCondition(
            keywords=tuple(_string_list(when.get("keywords"), f"{where}.when.keywords", errors)),
            channels=tuple(_string_list(when.get("channels"), f"{where}.when.channels", errors)),
            title_patterns=_compile_patterns(
                _string_list(when.get("title_patterns"), f"{where}.when.title_patterns", errors),
                f"{where}.when.title_patterns",
                errors,
            ),
            body_patterns=_compile_patterns(
                _string_list(when.get("body_patterns"), f"{where}.when.body_patterns", errors),
                f"{where}.when.body_patterns",
                errors,
            ),
            labels=tuple(_string_list(when.get("labels"), f"{where}.when.labels", errors)),
        )
        if condition.is_empty():
            errors.append(f"{where}: at least one 'when' condition is required")

        project_fields = route.get("project_fields") or {}
        if not isinstance(project_fields, dict):
            errors.append(f"{where}.route.project_fields: expected a mapping")
            project_fields = {}

        action = RouteAction(
            repo=_check_repo(route.get("repo"), f"{where}.route.repo", errors),
            labels=tuple(_string_list(route.get("labels"), f"{where}.route.labels", errors)),
            assignees=tuple(_string_list(route.get("assignees"), f"{where}.route.assignees", errors)),
            priority=_parse_priority(route.get("priority"), f"{where}.route.priority", errors),
            project_fields=dict(project_fields),
        )

        rules.append(RoutingRule(when=condition, route=action, name=str(raw.get("name", ""))))

    return rules


def _parse_duplicate_policy(raw: Any, errors: list[str]) -> DuplicatePolicy:
    section = _normalize_keys(raw)
    method_value = section.get("method", DuplicateMethod.BOTH.value)
    # Legacy configs call the permalink strategy "slack-permalink"
    if method_value == "slack-permalink":
        method_value = DuplicateMethod.PERMALINK.value
    try:
        method = DuplicateMethod(method_value)
    except ValueError:
        errors.append(f"duplicate_detection.method: unknown method '{method_value}'")
        method = DuplicateMethod.BOTH

    lookback_days = section.get("lookback_days", 30)
    if not isinstance(lookback_days, int) or lookback_days <= 0:
        errors.append("duplicate_detection.lookback_days must be a positive integer")
        lookback_days = 30

    return DuplicatePolicy(
        enabled=bool(section.get("enabled", True)),
        method=method,
        lookback_days=lookback_days,
    )


def _apply_section(target: Any, raw: Any, where: str, errors: list[str]) -> None:
    for key, value in _normalize_keys(raw).items():
        if not hasattr(target, key):
            errors.append(f"{where}: unknown setting '{key}'")
            continue
        current = getattr(target, key)
        if isinstance(current, Path):
            value = Path(value)
        elif isinstance(current, (int, float)) and not isinstance(current, bool):
            try:
                value = type(current)(value)
            except (TypeError, ValueError):
                errors.append(f"{where}.{key}: expected a number, got {value!r}")
                continue
        setattr(target, key, value)


def _environment_overrides(config: dict, env: Mapping[str, str]) -> dict:
    """Overlay supported environment variables onto the raw config."""
    overrides: dict[str, Any] = {}

    if env.get("DEFAULT_REPO"):
        overrides.setdefault("defaults", {})["repo"] = env["DEFAULT_REPO"]

    project_owner = env.get("DEFAULT_PROJECT_OWNER") or env.get("DEFAULT_PROJECT_ORG")
    if project_owner and env.get("DEFAULT_PROJECT_NUMBER"):
        overrides.setdefault("defaults", {})["project"] = {
            "owner": project_owner,
            "number": env["DEFAULT_PROJECT_NUMBER"],
        }

    if env.get("LLM_MODEL"):
        overrides.setdefault("llm", {})["model"] = env["LLM_MODEL"]
    if env.get("LLM_MAX_TOKENS"):
        overrides.setdefault("llm", {})["max_tokens"] = env["LLM_MAX_TOKENS"]

    if env.get("DUPLICATE_DETECTION_ENABLED"):
        overrides.setdefault("duplicate_detection", {})["enabled"] = (
            env["DUPLICATE_DETECTION_ENABLED"].lower() in _TRUE_VALUES
        )

    if env.get("ROUTING_HISTORY_DIR"):
        overrides.setdefault("paths", {})["history_dir"] = env["ROUTING_HISTORY_DIR"]
    if env.get("ROUTER_REPO"):
        overrides["router_repo"] = env["ROUTER_REPO"]

    return _merge(config, overrides)


def _select_environment(config: dict, environment: Optional[str]) -> dict:
    if environment and isinstance(config.get(environment), dict):
        config = _merge(config, config[environment])
    return {key: value for key, value in config.items() if key not in ENVIRONMENTS}


def _canonical_sections(config: dict) -> dict:
    """Map legacy camelCase section names onto the snake_case ones."""
    canonical = dict(config)
    if "duplicateDetection" in canonical:
        canonical["duplicate_detection"] = _merge(
            _normalize_keys(canonical.pop("duplicateDetection")),
            _normalize_keys(canonical.get("duplicate_detection")),
        )
    if "routerRepo" in canonical:
        canonical.setdefault("router_repo", canonical.pop("routerRepo"))
    if "claude" in canonical:
        canonical["llm"] = _merge(
            _normalize_keys(canonical.pop("claude")), _normalize_keys(canonical.get("llm"))
        )
    return canonical


def resolve_config_path(config_path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> Path:
    """Find the routing config file."""
    env = os.environ if env is None else env
    if config_path is not None:
        return Path(config_path)

    candidates = []
    if env.get("ROUTING_CONFIG_PATH"):
        candidates.append(Path(env["ROUTING_CONFIG_PATH"]))
    candidates.extend(DEFAULT_CONFIG_LOCATIONS)

    for candidate in candidates:
        if candidate.exists():
            return candidate

    searched = ", ".join(str(c) for c in candidates)
    raise ConfigError(f"Configuration file not found. Searched in: {searched}")


def load_config(config_path: Path) -> dict:
    """Load configuration from YAML file."""
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigError(f"{config_path}: top level must be a mapping")
    return config


def parse_settings(
    config: dict,
    environment: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> tuple[Settings, list[str]]:
    """Build settings from a raw config mapping, collecting validation errors."""
    env = os.environ if env is None else env
    errors: list[str] = []

    config = _select_environment(_canonical_sections(config), environment)
    config = _environment_overrides(config, env)

    settings = Settings(
        github_token=env.get("GITHUB_TOKEN") or None,
        anthropic_api_key=env.get("ANTHROPIC_API_KEY", ""),
    )

    defaults = _normalize_keys(config.get("defaults"))
    settings.defaults = DefaultsConfig(
        repo=_check_repo(defaults.get("repo"), "defaults.repo", errors),
        labels=_string_list(defaults.get("labels"), "defaults.labels", errors),
        project=_parse_project(defaults.get("project"), "defaults.project", errors),
    )

    settings.rules = build_rules(config.get("rules"), errors)
    if not settings.rules:
        errors.append("rules: at least one routing rule is required")

    if "llm" in config:
        llm = _normalize_keys(config["llm"])
        usage = llm.pop("usage", None)
        _apply_section(settings.claude, llm, "llm", errors)
        if usage is not None:
            _apply_section(settings.usage, usage, "llm.usage", errors)
    if "github" in config:
        _apply_section(settings.github, config["github"], "github", errors)
    if "paths" in config:
        _apply_section(settings.paths, config["paths"], "paths", errors)

    settings.duplicate_detection = _parse_duplicate_policy(config.get("duplicate_detection"), errors)

    router_repo = config.get("router_repo")
    if router_repo:
        settings.router_repo = _check_repo(router_repo, "router_repo", errors)

    if settings.github.max_attempts < 1:
        errors.append("github.max_attempts must be at least 1")

    return settings, errors


def settings_from_dict(
    config: dict,
    environment: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Build and validate settings from a config mapping."""
    settings, errors = parse_settings(config, environment, env)
    if errors:
        raise ConfigError("Invalid routing configuration:\n- " + "\n- ".join(errors))
    return settings


def get_settings(
    config_path: Optional[Path] = None,
    environment: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Get application settings from YAML config and environment."""
    path = resolve_config_path(config_path, env)
    settings = settings_from_dict(load_config(path), environment, env)
    settings.config_path = path
    return settings


def validate_config_file(config_path: Path, environment: Optional[str] = None) -> list[str]:
    """Validate a config file without raising. Returns the list of problems."""
    try:
        config = load_config(Path(config_path))
    except ConfigError as e:
        return [str(e)]

    _, errors = parse_settings(config, environment, env={})
    return errors
