#!/usr/bin/env python3
"""
CWD-Dash Web UI - NiceGUI Frontend

Browser dashboard for Missouri CWD surveillance samples: stat cards, a county
map colored by the selected metric, and a filterable sample table. Data is
loaded once at startup through the batch fetch manager.
"""

from __future__ import annotations

import argparse
import json
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from nicegui import app, ui

from batch_fetch import Progress
from county_map import METRICS, CountyMap
from dashboard import Dashboard
from load_surveillance import DataLoadError, LoadConfig, config_from_dict, load_records
from sample_table import COLLECTION_DATE_NOTE, COLUMNS, FILTER_GROUPS, SampleTable, parse_date_input
from surveillance_stats import SummaryStats, format_count


# -----------------------------------------
# Load State
# -----------------------------------------

@dataclass
class LoadStatus:
    """Tracks the one-time data load shared by all browser sessions."""
    is_loading: bool = False
    start_time: Optional[float] = None
    loaded: int = 0
    estimated_total: int = 0
    percent: int = 0
    source: Optional[str] = None
    error: Optional[str] = None
    records: Optional[list[dict[str, Any]]] = None
    log_messages: list[str] = field(default_factory=list)

    def on_progress(self, progress: Progress) -> None:
        self.loaded = progress.loaded
        self.estimated_total = progress.estimated_total
        self.percent = progress.percent


load_status = LoadStatus()
load_config = LoadConfig(show_progress=False, create_overview=False)


async def run_load() -> None:
    """Fetch records once; the page picks them up via its timer."""
    global load_status

    load_status = LoadStatus(is_loading=True, start_time=time.time())
    try:
        result = await load_records(load_config, on_progress=load_status.on_progress)
        load_status.records = result.records
        load_status.source = result.source
        load_status.log_messages.append(
            f"Loaded {len(result.records)} records from {result.source}"
        )
    except DataLoadError as e:
        load_status.error = str(e)
    finally:
        load_status.is_loading = False


# -----------------------------------------
# UI Components
# -----------------------------------------

STAT_CARDS = [
    ("total", "Total Samples", "text-blue-600"),
    ("positive", "Positive", "text-red-600"),
    ("negative", "Not Detected", "text-green-600"),
    ("pending", "Pending", "text-orange-500"),
    ("unsuitable", "Unsuitable", "text-gray-500"),
]


def create_header():
    with ui.header().classes('items-center justify-between'):
        with ui.row().classes('items-center gap-4'):
            ui.icon('coronavirus', size='lg').classes('text-white')
            ui.label('CWD Surveillance').classes('text-2xl font-bold text-white')
            ui.label('Missouri Chronic Wasting Disease Sampling').classes('text-sm text-gray-300')


def create_stats_panel() -> dict[str, Any]:
    labels: dict[str, Any] = {}
    with ui.row().classes('w-full gap-4'):
        for key, title, color in STAT_CARDS:
            with ui.card().classes('flex-grow items-center'):
                labels[key] = ui.label('0').classes(f'text-3xl font-bold {color}')
                ui.label(title).classes('text-sm text-gray-500')
    return labels


def create_map_panel(dashboard: Dashboard):
    county_map = dashboard.map

    with ui.card().classes('w-full'):
        with ui.row().classes('w-full items-center justify-between'):
            ui.label('Samples by County').classes('text-xl font-bold')
            ui.radio(
                {key: m.label for key, m in METRICS.items()},
                value=county_map.metric.key,
                on_change=lambda e: (county_map.set_metric(e.value), render.refresh()),
            ).props('inline')

        @ui.refreshable
        def render():
            legend = county_map.legend()
            with ui.row().classes('items-center gap-2'):
                ui.label(legend.label).classes('text-sm font-bold')
                ui.label('0').classes('text-xs')
                ui.element('div').style(
                    f'width: 200px; height: 16px; border: 1px solid #333; '
                    f'background: linear-gradient(to right, {legend.min_color}, {legend.max_color})'
                )
                ui.label(str(legend.max_value)).classes('text-xs')

            with ui.row().classes('w-full gap-1'):
                for county in county_map.counties:
                    selected = county == county_map.selected_county
                    border = '2px solid #000' if selected else '1px solid #fff'
                    with ui.button(county, on_click=lambda c=county: county_map.select(c)) \
                            .props('dense unelevated no-caps size=sm') \
                            .style(f'background-color: {county_map.fill_for(county)} !important; '
                                   f'color: #222; border: {border}'):
                        ui.tooltip(county_map.tooltip_for(county)).style('white-space: pre-line')

        render()

    return render


def create_table_panel(dashboard: Dashboard):
    table = dashboard.table
    columns = [
        {'name': c.key, 'label': c.label, 'field': c.key, 'align': 'left', 'style': f'width: {c.width}'}
        for c in COLUMNS
    ]

    with ui.card().classes('w-full'):
        with ui.row().classes('w-full items-center justify-between'):
            ui.label('Samples').classes('text-xl font-bold')
            count_label = ui.label('0 samples').classes('text-sm text-gray-500')

        def on_text(name: str, value: Optional[str]):
            table.set_filter(name, value or '')
            render.refresh()

        def on_date(name: str, value: Optional[str]):
            table.set_filter(name, parse_date_input(value))
            render.refresh()

        def on_check(name: str, value: str, checked: bool):
            table.toggle_option(name, value, checked)
            render.refresh()

        def on_clear():
            table.clear_filters()
            controls.refresh()
            render.refresh()

        @ui.refreshable
        def controls():
            f = table.filters
            with ui.row().classes('w-full gap-4 items-end'):
                ui.input(label='Specimen', value=f.specimen,
                         on_change=lambda e: on_text('specimen', e.value))
                ui.input(label='County', value=f.county,
                         on_change=lambda e: on_text('county', e.value))
                ui.input(label='Telecheck', value=f.telecheck,
                         on_change=lambda e: on_text('telecheck', e.value))
                ui.input(label='Harvested from',
                         value=f.harvest_date_start.isoformat() if f.harvest_date_start else '',
                         on_change=lambda e: on_date('harvest_date_start', e.value)).props('type=date')
                ui.input(label='Harvested to',
                         value=f.harvest_date_end.isoformat() if f.harvest_date_end else '',
                         on_change=lambda e: on_date('harvest_date_end', e.value)).props('type=date')
                ui.button('Clear filters', on_click=on_clear).props('outline size=sm')

            options = table.filter_options()
            with ui.row().classes('w-full gap-8'):
                for name, title in FILTER_GROUPS:
                    with ui.column().classes('gap-0'):
                        ui.label(title).classes('text-xs font-bold')
                        for value in options[name]:
                            ui.checkbox(value, value=value in getattr(f, name),
                                        on_change=lambda e, n=name, v=value: on_check(n, v, e.value)) \
                                .props('dense')

        controls()

        @ui.refreshable
        def render():
            count_label.text = f'{table.count} samples'
            with ui.row().classes('w-full gap-2'):
                for col in COLUMNS:
                    arrow = ''
                    if table.sort_key == col.key:
                        arrow = ' ▲' if table.sort_direction == 'asc' else ' ▼'
                    ui.button(f'{col.label}{arrow}',
                              on_click=lambda k=col.key: (table.sort_by(k), render.refresh())) \
                        .props('flat dense no-caps size=sm')

            ui.table(columns=columns, rows=table.page_rows(), row_key='specimen_no').classes('w-full')
            ui.label(COLLECTION_DATE_NOTE).classes('text-xs italic text-gray-500')

            if table.total_pages > 1:
                with ui.row().classes('items-center gap-4'):
                    ui.button('Previous', on_click=lambda: (table.previous_page(), render.refresh())) \
                        .props(f'outline size=sm {"disable" if table.current_page == 1 else ""}')
                    ui.label(table.page_info())
                    ui.button('Next', on_click=lambda: (table.next_page(), render.refresh())) \
                        .props(f'outline size=sm {"disable" if table.current_page == table.total_pages else ""}')

        render()

    return [controls, render]


def create_filter_panel(dashboard: Dashboard, on_change):
    with ui.row().classes('w-full gap-4 items-end'):
        ui.select(['', *map(str, dashboard.year_options())], label='Year', value='',
                  on_change=lambda e: on_change('year', e.value or '')).classes('w-32')
        county_select = ui.select(['', *dashboard.county_options()], label='County', value='',
                                  on_change=lambda e: on_change('county', e.value or '')).classes('w-48')
        ui.select(['', *dashboard.result_options()], label='Result', value='',
                  on_change=lambda e: on_change('result', e.value or '')).classes('w-40')
        ui.select({'deduplicated': 'Deduplicated', 'all': 'All records'}, label='Records',
                  value='deduplicated',
                  on_change=lambda e: on_change('deduplicate', e.value == 'deduplicated')).classes('w-40')
    return county_select


# -----------------------------------------
# Main Application
# -----------------------------------------

@ui.page('/')
def main_page():
    create_header()

    with ui.column().classes('w-full max-w-6xl mx-auto p-4 gap-4'):
        loading = ui.column().classes('w-full items-center')
        with loading:
            ui.label('Loading CWD data...').classes('text-lg')
            progress_bar = ui.linear_progress(value=0, show_value=False).classes('w-full')
            progress_text = ui.label('0 records (0%)')

        content = ui.column().classes('w-full gap-4')

    state: dict[str, Any] = {'rendered': False}

    def build(records: list[dict[str, Any]]):
        stat_labels: dict[str, Any] = {}

        def show_stats(stats: SummaryStats):
            for key, label in stat_labels.items():
                label.text = format_count(getattr(stats, key))

        dashboard = Dashboard(CountyMap(), SampleTable(), on_stats=show_stats)
        dashboard.load(records)

        with content:
            renders: list = []

            def on_filter(name: str, value: Any):
                dashboard.set_filter(name, value)
                for r in renders:
                    r.refresh()

            county_select = create_filter_panel(dashboard, on_filter)
            stat_labels.update(create_stats_panel())
            show_stats(dashboard.stats)

            def on_map_select(county: Optional[str]):
                dashboard.set_filter('county', county or '')
                county_select.set_value(county or '')
                for r in renders:
                    r.refresh()

            dashboard.map.on_select = on_map_select
            renders.append(create_map_panel(dashboard))
            renders.extend(create_table_panel(dashboard))

    def poll():
        if state['rendered']:
            return
        status = load_status
        progress_bar.value = status.percent / 100
        progress_text.text = f'{status.loaded} records ({status.percent}%)'

        if status.error:
            loading.clear()
            with loading:
                ui.label('Failed to load CWD data. Please try refreshing the page.').classes('text-red-600')
            state['rendered'] = True
            return

        if status.records is not None:
            loading.set_visibility(False)
            build(status.records)
            state['rendered'] = True

    ui.timer(0.5, poll)


def parse_args(argv: Optional[list[str]] = None) -> tuple[LoadConfig, int]:
    p = argparse.ArgumentParser(description="CWD surveillance dashboard")
    p.add_argument("--config", type=str, help="Path to JSON config file")
    p.add_argument("--fallback", type=str, default="output-data.json")
    p.add_argument("--port", type=int, default=8080)
    args = p.parse_args(argv)

    if args.config:
        with open(args.config, "r") as f:
            data = json.load(f)
        cfg = config_from_dict({**data, "show_progress": False, "create_overview": False})
    else:
        cfg = LoadConfig(fallback_path=args.fallback, show_progress=False, create_overview=False)
    return cfg, args.port


def cli() -> None:
    global load_config

    load_config, port = parse_args()
    app.on_startup(run_load)
    ui.run(title='CWD Surveillance', port=port, reload=False)


if __name__ in {"__main__", "__mp_main__"}:
    cli()
