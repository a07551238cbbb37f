"""Generación de Excel formateado para entrega médica."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from dosis_tool.model import GlucoseUnit, MeasurementTime

_DIA_SEMANA: tuple[str, ...] = ("lun", "mar", "mie", "jue", "vie", "sab", "dom")

_SLOT_HEADERS: dict[str, str] = {
    MeasurementTime.WAKING.value: "Al despertar",
    MeasurementTime.PRE_BREAKFAST.value: "Antes\ndesayuno",
    MeasurementTime.POST_BREAKFAST.value: "Después\ndesayuno",
    MeasurementTime.PRE_LUNCH.value: "Antes\nalmuerzo",
    MeasurementTime.POST_LUNCH.value: "Después\nalmuerzo",
    MeasurementTime.PRE_DINNER.value: "Antes\ncena",
    MeasurementTime.POST_DINNER.value: "Después\ncena",
    MeasurementTime.SNACK.value: "Colación",
    MeasurementTime.BEDTIME.value: "Al dormir",
    MeasurementTime.DURING_SLEEP.value: "Durante\nla noche",
}

_HEADER_MAP: dict[str, str] = {
    "weekday": "Día",
    "date": "Fecha",
    **_SLOT_HEADERS,
    "total_insulin": "Insulina\nrápida (u)",
    "total_carbs": "Carbohidratos\n(g)",
}

# Fills for glucose cells by glycemic state.
_STATE_FILLS: dict[str, str] = {
    "hypo": "FECACA",
    "high": "FED7AA",
    "critical": "DDD6FE",
}


@dataclass(frozen=True)
class ExcelLayout:
    """Layout/formatting configuration for the doctor sheet."""

    sheet_name: str = "Planilla de glucosa"
    unit: GlucoseUnit = GlucoseUnit.MMOL_L


def _add_weekday_column(matrix: pd.DataFrame) -> pd.DataFrame:
    """Antepone la columna weekday (Día) calculada desde date."""
    if matrix.empty:
        return matrix
    days = pd.to_datetime(matrix["date"], errors="coerce").dt.dayofweek
    labels = days.map(dict(enumerate(_DIA_SEMANA))).fillna("")
    return matrix.assign(weekday=labels)[["weekday", *matrix.columns]]


def write_logbook_xlsx(
    matrix: pd.DataFrame,
    out_path: Path,
    layout: ExcelLayout,
    states: pd.DataFrame | None = None,
) -> None:
    """Write the date x slot logbook as a printable Excel sheet.

    Args:
        matrix: Output of ``reports.logbook_matrix``.
        out_path: Output path for the XLSX file.
        layout: Excel layout parameters.
        states: Optional frame shaped like ``matrix`` with the glycemic state
            of each slot cell, used to color the cells.
    """
    out_path.parent.mkdir(parents=True, exist_ok=True)

    export_df = _add_weekday_column(matrix)
    export_df = export_df.rename(columns=_HEADER_MAP)

    with pd.ExcelWriter(out_path, engine="openpyxl") as writer:
        export_df.to_excel(writer, index=False, sheet_name=layout.sheet_name)
        ws = writer.book[layout.sheet_name]
        _format_sheet(ws, layout.unit)
        if states is not None:
            _fill_states(ws, states)


def _style_cells(ws: Any) -> None:
    """Cabecera en negrita; todas las celdas centradas y con borde fino."""
    thin = Side(style="thin")
    border = Border(left=thin, right=thin, top=thin, bottom=thin)
    center = Alignment(horizontal="center", vertical="center", wrap_text=True)
    bold = Font(bold=True)
    for row in ws.iter_rows():
        for cell in row:
            cell.alignment = center
            cell.border = border
            if cell.row == 1:
                cell.font = bold
    ws.row_dimensions[1].height = 30


def _get_header_col_index(ws: Any) -> dict[str, int]:
    """Devuelve mapa nombre de cabecera -> índice de columna (1-based)."""
    headers = [str(cell.value) for cell in ws[1]]
    return {name: idx + 1 for idx, name in enumerate(headers)}


def _apply_column_widths(ws: Any, col_index: dict[str, int]) -> None:
    """Establece anchos de columna para evitar ###."""
    widths = [("Día", 6), ("Fecha", 12)]
    widths += [(header, 10) for header in _SLOT_HEADERS.values()]
    widths += [("Insulina\nrápida (u)", 10), ("Carbohidratos\n(g)", 14)]
    for header, width in widths:
        idx = col_index.get(header)
        if idx is not None:
            ws.column_dimensions[get_column_letter(idx)].width = width


def _apply_number_formats(
    ws: Any, col_index: dict[str, int], unit: GlucoseUnit
) -> None:
    """Aplica formatos numéricos por cabecera."""
    glucose_fmt = "0" if unit == GlucoseUnit.MG_DL else "0.0"
    fmt_map: dict[str, str] = dict.fromkeys(_SLOT_HEADERS.values(), glucose_fmt)
    fmt_map.update(
        {
            "Fecha": "dd/mm/yyyy",
            "Insulina\nrápida (u)": "0.0",
            "Carbohidratos\n(g)": "0",
        }
    )
    for row in ws.iter_rows(min_row=2):
        for header, fmt in fmt_map.items():
            idx = col_index.get(header)
            if idx is not None:
                row[idx - 1].number_format = fmt


def _fill_states(ws: Any, states: pd.DataFrame) -> None:
    """Colorea cada celda de glucosa según su estado."""
    col_index = _get_header_col_index(ws)
    for slot, header in _SLOT_HEADERS.items():
        idx = col_index.get(header)
        if idx is None or slot not in states.columns:
            continue
        for offset, state in enumerate(states[slot].tolist()):
            color = _STATE_FILLS.get(str(state))
            if color:
                ws.cell(row=offset + 2, column=idx).fill = PatternFill(
                    start_color=color, end_color=color, fill_type="solid"
                )


def _format_sheet(ws: Any, unit: GlucoseUnit = GlucoseUnit.MMOL_L) -> None:
    """Apply borders, widths and number formats to a worksheet.

    Args:
        ws: openpyxl worksheet.
        unit: Glucose unit shown in the slot columns.
    """
    _style_cells(ws)
    col_index = _get_header_col_index(ws)
    _apply_column_widths(ws, col_index)
    _apply_number_formats(ws, col_index, unit)
