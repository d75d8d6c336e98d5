# geoguard/cli/main.py
# -*- coding: utf-8 -*-
"""
Operator CLI for geoguard-core.

Subcommands:
- version                 версия и окружение
- config show             эффективные настройки, секреты скрыты
- policy show [--json]    эффективная политика из env/.env (или --policy FILE)
- check --ip ...          офлайн-оценка одного запроса по заданным geo-данным
- serve                   HTTP API через uvicorn

Коды выхода: 0 OK, 2 BLOCKED, 4 CONFIG_ERROR, 1 внутренняя ошибка.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from enum import IntEnum
from pathlib import Path
from typing import Any, Callable, List, Optional

from pydantic import ValidationError

from .. import __version__
from ..context import RequestContext
from ..errors import ConfigError
from ..geo import GeoLookup, GeoSnapshot, NoopGeoLookup, StaticGeoLookup
from ..policy.audit import DecisionAuditEmitter, MemoryAuditSink
from ..policy.config import PolicyConfig, PolicyStore
from ..policy.evaluator import PolicyEvaluator
from ..settings import AppSettings

PROG = "geoguard"

log = logging.getLogger("geoguard.cli")


class ExitCode(IntEnum):
    OK = 0
    INTERNAL = 1
    BLOCKED = 2
    CONFIG_ERROR = 4
    INTERRUPTED = 130


# ---------------------------- Helpers ----------------------------------------

def _echo_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2, sort_keys=True))


def _load_policy(args: argparse.Namespace, settings: AppSettings) -> PolicyConfig:
    """
    Источник политики: --policy FILE (JSON, snake_case или camelCase) либо env.
    --enable принудительно включает политику.
    """
    path: Optional[Path] = getattr(args, "policy", None)
    if path is not None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise ConfigError(f"policy file not found: {path}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"policy file is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError("policy file must contain a JSON object")
        config = PolicyConfig.from_mapping(data)
    else:
        config = settings.policy.to_policy()
    if getattr(args, "enable", False):
        config = dataclasses.replace(config, enabled=True)
    return config


def _lookup_from_args(args: argparse.Namespace) -> GeoLookup:
    if args.lookup_fails:
        return NoopGeoLookup()
    snap = GeoSnapshot(
        country=args.country or "unknown",
        region=args.region,
        city=args.city,
        isp=args.isp,
        risk_score=args.risk,
        timezone=args.timezone,
    )
    return StaticGeoLookup(default=snap)


# ---------------------------- Commands ---------------------------------------

def cmd_version(args: argparse.Namespace, settings: AppSettings) -> int:
    _echo_json({
        "app": settings.app_name,
        "version": __version__,
        "environment": settings.environment.value,
        "python": sys.version.split()[0],
    })
    return ExitCode.OK


def cmd_config_show(args: argparse.Namespace, settings: AppSettings) -> int:
    _echo_json(settings.redacted_dict())
    return ExitCode.OK


def cmd_policy_show(args: argparse.Namespace, settings: AppSettings) -> int:
    config = _load_policy(args, settings)
    data = config.to_dict()
    if args.json:
        _echo_json(data)
        return ExitCode.OK
    tw = data["time_window"]
    lines = [
        f"enabled:            {data['enabled']}",
        f"country mode:       {data['country_mode']}",
        f"blocked countries:  {', '.join(data['blocked_countries']) or '-'}",
        f"allowed countries:  {', '.join(data['allowed_countries'] or []) or '-'}",
        f"blocked regions:    {', '.join(data['blocked_regions']) or '-'}",
        f"vpn/proxy/dc:       {data['vpn_blocking']}/{data['proxy_blocking']}/{data['datacenter_blocking']}",
        f"risk threshold:     {data['risk_threshold']}",
        f"fail open:          {data['fail_open']}",
        f"whitelist ips:      {', '.join(data['whitelist']['ips']) or '-'}",
        f"whitelist cidrs:    {', '.join(data['whitelist']['cidrs']) or '-'}",
        f"time window:        {tw['enabled']} {tw['timezone']} "
        f"{tw['allowed_hours']['start']}-{tw['allowed_hours']['end']}",
    ]
    print("\n".join(lines))
    return ExitCode.OK


def cmd_check(args: argparse.Namespace, settings: AppSettings) -> int:
    config = _load_policy(args, settings)
    sink = MemoryAuditSink()
    evaluator = PolicyEvaluator(
        PolicyStore(config),
        _lookup_from_args(args),
        emitter=DecisionAuditEmitter(sink),
        lookup_timeout=settings.lookup.timeout_seconds,
    )
    ctx = RequestContext(
        ip=args.ip,
        user_agent=args.user_agent,
        path=args.path,
        method="GET",
        user_email=args.email,
    )
    decision = asyncio.run(evaluator.evaluate(ctx))
    out = {"decision": decision.to_dict()}
    if decision.error:
        out["error"] = decision.error
    if args.audit:
        out["audit"] = [e.to_dict() for e in sink.events]
    _echo_json(out)
    return ExitCode.BLOCKED if decision.blocked else ExitCode.OK


def cmd_serve(args: argparse.Namespace, settings: AppSettings) -> int:
    import uvicorn

    from ..api.http.server import create_app
    from ..observability.logging import configure_logging

    configure_logging(settings)
    app = create_app(settings)
    uvicorn.run(
        app,
        host=args.host or settings.host,
        port=args.port or settings.port,
        log_level=settings.log.level.lower(),
        access_log=False,
        proxy_headers=True,
    )
    return ExitCode.OK


# ---------------------------- CLI Wiring -------------------------------------

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog=PROG, description="Location-aware access policy engine")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    ver = sub.add_parser("version", help="Версия и окружение")
    ver.set_defaults(func=cmd_version)

    conf = sub.add_parser("config", help="Операции с настройками")
    conf_sub = conf.add_subparsers(dest="config_cmd", required=True)
    conf_show = conf_sub.add_parser("show", help="Показать настройки без секретов")
    conf_show.set_defaults(func=cmd_config_show)

    pol = sub.add_parser("policy", help="Операции с политикой")
    pol_sub = pol.add_subparsers(dest="policy_cmd", required=True)
    show = pol_sub.add_parser("show", help="Показать эффективную политику")
    show.add_argument("--json", action="store_true", help="Вывод в JSON")
    show.add_argument("--policy", type=Path, help="JSON-файл политики вместо env")
    show.add_argument("--enable", action="store_true", help="Считать политику включённой")
    show.set_defaults(func=cmd_policy_show)

    chk = sub.add_parser("check", help="Оценить один запрос офлайн")
    chk.add_argument("--ip", required=True, help="IP клиента")
    chk.add_argument("--country", help="ISO-код страны из геолокации")
    chk.add_argument("--region")
    chk.add_argument("--city")
    chk.add_argument("--isp")
    chk.add_argument("--risk", type=int, help="Risk score 0..100")
    chk.add_argument("--timezone", help="IANA timezone клиента")
    chk.add_argument("--lookup-fails", action="store_true", help="Смоделировать отказ геолокации")
    chk.add_argument("--email")
    chk.add_argument("--user-agent", default=f"{PROG}-cli/{__version__}")
    chk.add_argument("--path", default="/")
    chk.add_argument("--policy", type=Path, help="JSON-файл политики вместо env")
    chk.add_argument("--enable", action="store_true", help="Считать политику включённой")
    chk.add_argument("--audit", action="store_true", help="Добавить audit-события в вывод")
    chk.set_defaults(func=cmd_check)

    srv = sub.add_parser("serve", help="Запустить HTTP API")
    srv.add_argument("--host")
    srv.add_argument("--port", type=int)
    srv.set_defaults(func=cmd_serve)

    return p


def main(argv: Optional[List[str]] = None, *, settings_factory: Callable[[], AppSettings] = AppSettings) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = settings_factory()
        settings.verify()
        return int(args.func(args, settings))
    except (ConfigError, ValidationError) as e:
        print(f"Config error: {e}", file=sys.stderr)
        return ExitCode.CONFIG_ERROR
    except KeyboardInterrupt:
        print("Операция прервана пользователем.", file=sys.stderr)
        return ExitCode.INTERRUPTED
    except Exception as e:
        log.exception("unhandled error in %s", args.cmd)
        print(f"Внутренняя ошибка: {type(e).__name__}", file=sys.stderr)
        return ExitCode.INTERNAL


if __name__ == "__main__":
    sys.exit(main())
