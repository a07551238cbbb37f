"""CLI de dosis: registro, conversión, bolo, visitas y reportes."""

from __future__ import annotations

import argparse
import logging
import math
import uuid
from collections.abc import Sequence
from dataclasses import replace
from datetime import date, datetime, timedelta, tzinfo
from pathlib import Path

from dateutil import tz

from dosis_tool.dosing import DEFAULT_CORRECTION_TARGET, compute_bolus
from dosis_tool.errors import (
    ConcurrentUpdateError,
    HypoglycemiaError,
    InvalidInputError,
    NotFoundError,
    VisitAlreadyAppliedError,
)
from dosis_tool.excel_writer import ExcelLayout, write_logbook_xlsx
from dosis_tool.glycemia import (
    DEFAULT_THRESHOLDS,
    classify_glucose,
    thresholds_for_profile,
)
from dosis_tool.model import (
    GlucoseUnit,
    MealType,
    MeasurementTime,
    MedicalProfile,
    SelectedFoodItem,
    Visit,
    VisitStatus,
)
from dosis_tool.reports import (
    compare_periods,
    logbook_matrix,
    logbook_states,
    period_stats,
    tag_counts,
)
from dosis_tool.stores.sqlite import AppConfig, SQLiteStore
from dosis_tool.tracker import record_meal, record_reading
from dosis_tool.units import convert_unit, format_glucose, switch_profile_unit
from dosis_tool.visits import apply_visit_by_id, proposed_changes

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_USER_ERRORS = (
    InvalidInputError,
    NotFoundError,
    VisitAlreadyAppliedError,
    HypoglycemiaError,
    ConcurrentUpdateError,
)

# Numeric fields settable from the command line.
PROFILE_AMOUNT_FIELDS: tuple[str, ...] = (
    "target_low",
    "target_high",
    "critical_high",
    "normal_range_min",
    "normal_range_max",
    "icr",
    "icr_breakfast",
    "icr_lunch",
    "icr_dinner",
    "isf",
    "correction_target",
    "long_acting_dose",
)
VISIT_AMOUNT_FIELDS: tuple[str, ...] = (
    "new_long_acting_dose",
    "new_icr_breakfast",
    "new_icr_lunch",
    "new_icr_dinner",
    "new_isf",
)


def _food_item(text: str) -> SelectedFoodItem:
    """Parse ``nombre:carbs_por_unidad[:cantidad]`` into a food portion."""
    parts = text.split(":")
    name = parts[0].strip()
    if len(parts) not in (2, 3) or not name:
        raise argparse.ArgumentTypeError(
            f"invalid item {text!r} (nombre:carbs_por_unidad[:cantidad])"
        )
    try:
        carbs_per_unit = float(parts[1])
        quantity = float(parts[2]) if len(parts) == 3 else 1.0
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number in item {text!r}") from None
    return SelectedFoodItem(
        food_id=name.lower().replace(" ", "_"),
        food_name=name,
        unit_name="porción",
        quantity=quantity,
        carbs_per_unit=carbs_per_unit,
    )


def _add_period_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--user", required=True, help="Id del niño/a.")
    parser.add_argument(
        "--start",
        type=date.fromisoformat,
        default=None,
        help="Primer día (YYYY-MM-DD, default: hace 30 días).",
    )
    parser.add_argument(
        "--end",
        type=date.fromisoformat,
        default=None,
        help="Último día (YYYY-MM-DD, default: hoy).",
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Arguments without the program name (default: ``sys.argv``).

    Returns:
        Parsed argparse namespace.
    """
    parser = argparse.ArgumentParser(
        description="Calculadora de dosis de insulina y planilla de glucosa."
    )
    parser.add_argument(
        "--db",
        default="dosis_tool.sqlite3",
        help="Archivo SQLite (default: ./dosis_tool.sqlite3).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("convert", help="Convierte un valor entre unidades.")
    p.add_argument("value", type=float)
    p.add_argument("--from", dest="from_unit", type=GlucoseUnit, required=True)
    p.add_argument("--to", dest="to_unit", type=GlucoseUnit, required=True)

    p = sub.add_parser("classify", help="Estado glucémico de un valor.")
    p.add_argument("value", type=float)
    p.add_argument("--unit", type=GlucoseUnit, default=None)
    p.add_argument("--user", default=None, help="Usa los umbrales del perfil.")

    p = sub.add_parser("bolus", help="Bolo sugerido (comida + corrección).")
    p.add_argument("--carbs", type=float, required=True)
    p.add_argument("--icr", type=float, default=None)
    p.add_argument("--glucose", type=float, default=None)
    p.add_argument("--isf", type=float, default=None)
    p.add_argument("--target", type=float, default=None)
    p.add_argument("--unit", type=GlucoseUnit, default=None)

    p = sub.add_parser("switch-unit", help="Cambia la unidad del perfil.")
    p.add_argument("--user", required=True)
    p.add_argument("--unit", type=GlucoseUnit, required=True)

    p = sub.add_parser("apply-visit", help="Aplica al perfil los cambios de visita.")
    p.add_argument("visit_id")
    p.add_argument("--force", action="store_true", help="Re-aplica la visita.")

    p = sub.add_parser("profile", help="Crea o modifica el perfil médico.")
    p.add_argument("--user", required=True)
    p.add_argument("--unit", type=GlucoseUnit, default=None, help="Solo al crearlo.")
    for name in PROFILE_AMOUNT_FIELDS:
        p.add_argument("--" + name.replace("_", "-"), type=float, default=None)
    p.add_argument("--long-acting-time", default=None, help="HH:MM")

    p = sub.add_parser("reading", help="Registra una lectura de glucosa.")
    p.add_argument("value", type=float)
    p.add_argument("--user", required=True)
    p.add_argument("--slot", type=MeasurementTime, required=True)
    p.add_argument("--unit", type=GlucoseUnit, default=None)
    p.add_argument("--day", type=date.fromisoformat, default=None)
    p.add_argument("--notes", default=None)
    p.add_argument("--tag", action="append", default=None, help="Repetible.")
    p.add_argument("--meal-bolus", type=float, default=None)
    p.add_argument("--long-acting", type=float, default=None)
    p.add_argument("--correction-method", default=None)
    p.add_argument("--carbs", type=float, default=None)

    p = sub.add_parser("meal", help="Registra una comida y su dosis.")
    p.add_argument("--user", required=True)
    p.add_argument("--type", dest="meal_type", type=MealType, required=True)
    p.add_argument(
        "--item",
        dest="items",
        type=_food_item,
        action="append",
        required=True,
        help="nombre:carbs_por_unidad[:cantidad] (repetible).",
    )
    p.add_argument("--day", type=date.fromisoformat, default=None)
    p.add_argument("--glucose", type=float, default=None)
    p.add_argument("--unit", type=GlucoseUnit, default=None)
    p.add_argument("--manual-correction", type=float, default=None)
    p.add_argument("--manual-total", type=float, default=None)

    p = sub.add_parser("visit", help="Registra una visita con cambios propuestos.")
    p.add_argument("--user", required=True)
    p.add_argument("--id", dest="visit_id", default=None)
    p.add_argument("--date", type=date.fromisoformat, default=None)
    p.add_argument("--doctor", default="")
    p.add_argument("--reason", default="")
    p.add_argument("--status", type=VisitStatus, default=VisitStatus.UPCOMING)
    for name in VISIT_AMOUNT_FIELDS:
        p.add_argument("--" + name.replace("_", "-"), type=float, default=None)
    p.add_argument("--new-long-acting-time", default=None, help="HH:MM")

    p = sub.add_parser("report", help="Estadísticas del período.")
    _add_period_args(p)

    p = sub.add_parser("export", help="Exporta la planilla a Excel.")
    _add_period_args(p)
    p.add_argument("--out-dir", default=None, help="Directorio de salida.")

    p = sub.add_parser("config", help="Muestra o modifica la configuración.")
    p.add_argument("--export-dir", default=None)
    p.add_argument("--timezone", default=None)
    p.add_argument("--default-unit", type=GlucoseUnit, default=None)
    p.add_argument("--log-level", default=None)

    return parser.parse_args(argv)


def _period(ns: argparse.Namespace, today: date) -> tuple[date, date]:
    end = ns.end or today
    start = ns.start or end - timedelta(days=30)
    return start, end


def _local_tz(config: AppConfig) -> tzinfo:
    return tz.gettz(config.timezone) or tz.UTC


def _cmd_convert(ns: argparse.Namespace) -> None:
    result = convert_unit(ns.value, ns.from_unit, ns.to_unit)
    print(f"OK: {ns.value:g} {ns.from_unit.value} = {result:g} {ns.to_unit.value}")


def _cmd_classify(
    ns: argparse.Namespace, store: SQLiteStore, config: AppConfig
) -> None:
    unit = ns.unit or config.default_unit
    thresholds = DEFAULT_THRESHOLDS
    if ns.user:
        thresholds = thresholds_for_profile(store.get_profile(ns.user))
    state = classify_glucose(ns.value, thresholds, unit)
    print(f"OK: {ns.value:g} {unit.value} -> {state.value}")


def _cmd_bolus(ns: argparse.Namespace, config: AppConfig) -> None:
    unit = ns.unit or config.default_unit
    target = ns.target or DEFAULT_CORRECTION_TARGET[unit]
    state = None
    if ns.glucose:
        state = classify_glucose(ns.glucose, DEFAULT_THRESHOLDS, unit)
    breakdown = compute_bolus(ns.carbs, ns.icr, ns.glucose, target, ns.isf, state)
    state_label = state.value if state is not None else "sin lectura"
    print(
        f"OK: food {breakdown.food:g} u, correction {breakdown.correction:g} u, "
        f"total {breakdown.total:g} u ({state_label})"
    )


def _cmd_switch_unit(ns: argparse.Namespace, store: SQLiteStore) -> None:
    profile = store.get_profile(ns.user)
    stored = store.save_profile(ns.user, switch_profile_unit(profile, ns.unit))
    print(f"OK: profile of {ns.user} now in {stored.preferred_unit.value}")


def _cmd_apply_visit(ns: argparse.Namespace, store: SQLiteStore) -> None:
    visit, profile = apply_visit_by_id(store, ns.visit_id, force=ns.force)
    print(f"OK: visit {visit.id} applied to {visit.user_id} (v{profile.version})")


def _checked_amounts(ns: argparse.Namespace, names: Sequence[str]) -> dict[str, float]:
    """Options of ``names`` that were given, rejecting negative or non-finite."""
    amounts: dict[str, float] = {}
    for name in names:
        value = getattr(ns, name)
        if value is None:
            continue
        if not math.isfinite(value) or value < 0:
            raise InvalidInputError(f"{name} must be a non-negative number: {value}")
        amounts[name] = value
    return amounts


def _cmd_profile(
    ns: argparse.Namespace, store: SQLiteStore, config: AppConfig
) -> None:
    changes: dict[str, object] = dict(_checked_amounts(ns, PROFILE_AMOUNT_FIELDS))
    if ns.long_acting_time:
        changes["long_acting_time"] = ns.long_acting_time
    try:
        profile = store.get_profile(ns.user)
    except NotFoundError:
        profile = MedicalProfile(preferred_unit=ns.unit or config.default_unit)
    else:
        if ns.unit is not None and ns.unit != profile.preferred_unit:
            raise InvalidInputError(
                f"Profile of {ns.user} is in {profile.preferred_unit.value}; "
                "use switch-unit to change it"
            )
    stored = store.save_profile(ns.user, replace(profile, **changes))
    print(
        f"OK: profile of {ns.user} saved "
        f"(v{stored.version}, {stored.preferred_unit.value})"
    )
    for name in PROFILE_AMOUNT_FIELDS:
        value = getattr(stored, name)
        if value:
            print(f"OK: {name}={value:g}")


def _cmd_reading(
    ns: argparse.Namespace, store: SQLiteStore, config: AppConfig
) -> None:
    _checked_amounts(ns, ("meal_bolus", "long_acting", "carbs"))
    unit = ns.unit or store.get_profile(ns.user).preferred_unit
    reading, state = record_reading(
        store,
        ns.user,
        ns.value,
        unit,
        ns.slot,
        day=ns.day,
        notes=ns.notes,
        tags=ns.tag or (),
        meal_bolus=ns.meal_bolus,
        long_acting_units=ns.long_acting,
        correction_method=ns.correction_method,
        carbs=ns.carbs,
        now=datetime.now(tz=_local_tz(config)),
    )
    shown = format_glucose(reading.value, unit)
    print(f"OK: reading {reading.id} {shown} {unit.value} ({state.value})")
    print(f"OK: insulin {reading.insulin_units or 0:g} u")


def _cmd_meal(ns: argparse.Namespace, store: SQLiteStore, config: AppConfig) -> None:
    now = datetime.now(tz=_local_tz(config))
    entry, decision = record_meal(
        store,
        ns.user,
        ns.day or now.date(),
        ns.meal_type,
        ns.items,
        glucose=ns.glucose,
        unit=ns.unit,
        manual_correction=ns.manual_correction,
        manual_total=ns.manual_total,
        now=now,
    )
    print(f"OK: meal {entry.id} {entry.total_carbs:g} g carbs")
    print(
        f"OK: food {decision.computed.food:g} u, "
        f"correction {decision.correction:g} u, total {decision.total:g} u"
    )


def _cmd_visit(ns: argparse.Namespace, store: SQLiteStore, config: AppConfig) -> None:
    changes: dict[str, object] = dict(_checked_amounts(ns, VISIT_AMOUNT_FIELDS))
    if ns.new_long_acting_time:
        changes["new_long_acting_time"] = ns.new_long_acting_time
    store.get_profile(ns.user)
    visit = Visit(
        id=ns.visit_id or f"visit_{uuid.uuid4().hex[:12]}",
        user_id=ns.user,
        date=ns.date or datetime.now(tz=_local_tz(config)).date(),
        doctor_name=ns.doctor,
        status=ns.status,
        reason=ns.reason,
        **changes,
    )
    store.save_visit(visit)
    print(f"OK: visit {visit.id} saved for {ns.user}")
    for name, value in proposed_changes(visit).items():
        print(f"OK: proposes {name}={value}")


def _cmd_report(
    ns: argparse.Namespace, store: SQLiteStore, config: AppConfig
) -> None:
    profile = store.get_profile(ns.user)
    thresholds = thresholds_for_profile(profile)
    start, end = _period(ns, datetime.now(tz=_local_tz(config)).date())
    readings = store.list_readings(ns.user, start, end)
    stats = period_stats(readings, thresholds)

    length = end - start
    prev_end = start - timedelta(days=1)
    previous = period_stats(
        store.list_readings(ns.user, prev_end - length, prev_end), thresholds
    )
    delta = compare_periods(stats, previous)

    unit = profile.preferred_unit
    print(f"OK: {ns.user} {start.isoformat()}..{end.isoformat()}")
    print(f"OK: readings {stats.count}")
    if stats.count:
        print(f"OK: average {format_glucose(stats.average_mmol, unit)} {unit.value}")
        print(f"OK: estimated HbA1c {stats.estimated_a1c:.1f}%")
    print(
        f"OK: in range {stats.target_percent}% "
        f"({delta['target_percent']:+g} vs previous period)"
    )
    print(
        f"OK: hypo {stats.hypo_percent}%, high {stats.high_percent}%, "
        f"critical {stats.critical_percent}%"
    )
    tags = tag_counts(readings)
    if tags:
        print("OK: tags " + ", ".join(f"{k} ({v})" for k, v in tags.items()))


def _cmd_export(
    ns: argparse.Namespace, store: SQLiteStore, config: AppConfig
) -> None:
    profile = store.get_profile(ns.user)
    local_tz = _local_tz(config)
    now = datetime.now(tz=local_tz)
    start, end = _period(ns, now.date())
    readings = store.list_readings(ns.user, start, end)
    meals = [
        meal
        for offset in range((end - start).days + 1)
        for meal in store.get_meal_entries_for_date(
            ns.user, start + timedelta(days=offset)
        )
    ]
    unit = profile.preferred_unit
    matrix = logbook_matrix(readings, meals, unit)
    states = logbook_states(readings, thresholds_for_profile(profile))

    out_dir = Path(ns.out_dir or config.export_dir or "salidas").expanduser()
    ts = now.strftime("%Y-%m-%d_%H-%M-%S")
    out_path = out_dir / f"planilla_glucosa_{ns.user}_{ts}.xlsx"
    write_logbook_xlsx(matrix, out_path, ExcelLayout(unit=unit), states)

    print(f"OK: readings: {len(readings)}")
    print(f"OK: days: {len(matrix)}")
    print(f"OK: Output: {out_path}")


def _cmd_config(
    ns: argparse.Namespace, store: SQLiteStore, config: AppConfig
) -> None:
    updated = replace(
        config,
        export_dir=ns.export_dir if ns.export_dir is not None else config.export_dir,
        timezone=ns.timezone or config.timezone,
        default_unit=ns.default_unit or config.default_unit,
        log_level=(ns.log_level or config.log_level).upper(),
    )
    if updated != config:
        store.save_config(updated)
    print(f"OK: export_dir={updated.export_dir or '(salidas)'}")
    print(f"OK: timezone={updated.timezone}")
    print(f"OK: default_unit={updated.default_unit.value}")
    print(f"OK: log_level={updated.log_level}")


def main(argv: Sequence[str] | None = None) -> int:
    """Run the CLI.

    Returns:
        Exit code (0 on success, 1 when the input is rejected).
    """
    ns = parse_args(argv)
    store = SQLiteStore(Path(ns.db).expanduser())
    config = store.load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO), format=LOG_FORMAT
    )
    logger.debug("Command %s on %s", ns.command, ns.db)

    try:
        if ns.command == "convert":
            _cmd_convert(ns)
        elif ns.command == "classify":
            _cmd_classify(ns, store, config)
        elif ns.command == "bolus":
            _cmd_bolus(ns, config)
        elif ns.command == "switch-unit":
            _cmd_switch_unit(ns, store)
        elif ns.command == "apply-visit":
            _cmd_apply_visit(ns, store)
        elif ns.command == "profile":
            _cmd_profile(ns, store, config)
        elif ns.command == "reading":
            _cmd_reading(ns, store, config)
        elif ns.command == "meal":
            _cmd_meal(ns, store, config)
        elif ns.command == "visit":
            _cmd_visit(ns, store, config)
        elif ns.command == "report":
            _cmd_report(ns, store, config)
        elif ns.command == "export":
            _cmd_export(ns, store, config)
        elif ns.command == "config":
            _cmd_config(ns, store, config)
    except _USER_ERRORS as exc:
        logger.warning("%s failed: %s", ns.command, exc)
        print(f"ERROR: {exc}")
        return 1
    return 0
