"""Rich rendering helpers for usage ledger summaries."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from .schemas import UsageSummary

TABLE_ROW_STYLES = ["white", "yellow"]


def render_usage_summary(summary: UsageSummary, console: Console) -> None:
    """Render the provider/model breakdown followed by the headline costs."""
    if not summary.providers:
        console.print(f"No usage recorded since {summary.window_start.isoformat()}.")
    else:
        _print_model_table(summary, console)
        console.print("\n")
        _print_provider_table(summary, console)

    console.print(f"Today: ${summary.total_cost_today:,.2f}")
    console.print(f"This month: ${summary.total_cost_this_month:,.2f}")


def _print_model_table(summary: UsageSummary, console: Console) -> None:
    table = Table(
        title=f"Token Usage by Model ({summary.period.value}, since {summary.window_start:%Y-%m-%d %H:%M %Z})",
        show_footer=True,
        footer_style="bold",
        title_justify="left",
    )
    table.add_column("Provider", footer="Grand Total", justify="left")
    table.add_column("Model", justify="left")
    table.add_column("Requests", justify="right")
    table.add_column("Input Tokens", justify="right")
    table.add_column("Output Tokens", justify="right")
    table.add_column("Cache Read Tokens", justify="right")
    table.add_column("Cache Write Tokens", justify="right")
    table.add_column("Cost ($)", justify="right")
    table.add_column("Total Tokens", justify="right")

    total_tokens = 0
    for style_index, provider in enumerate(summary.providers):
        # One row color per provider.
        row_style = TABLE_ROW_STYLES[style_index % len(TABLE_ROW_STYLES)]
        for model in provider.models:
            total_tokens += model.total_tokens
            table.add_row(
                provider.provider,
                model.model,
                str(model.request_count),
                f"{model.input_tokens:,}",
                f"{model.output_tokens:,}",
                f"{model.cache_read_tokens:,}",
                f"{model.cache_creation_tokens:,}",
                f"{model.total_cost:,.6f}",
                f"{model.total_tokens:,}",
                style=row_style,
            )

    table.columns[2].footer = str(summary.request_count)
    table.columns[3].footer = f"{sum(provider.input_tokens for provider in summary.providers):,}"
    table.columns[4].footer = f"{sum(provider.output_tokens for provider in summary.providers):,}"
    table.columns[5].footer = f"{sum(provider.cache_read_tokens for provider in summary.providers):,}"
    table.columns[6].footer = f"{sum(provider.cache_creation_tokens for provider in summary.providers):,}"
    table.columns[7].footer = f"{summary.total_cost:,.6f}"
    table.columns[8].footer = f"{total_tokens:,}"
    console.print(table)


def _print_provider_table(summary: UsageSummary, console: Console) -> None:
    table = Table(title="Cost by Provider", show_footer=True, title_justify="left")
    table.add_column("Provider", footer="Total", justify="left")
    table.add_column("Requests", justify="right", footer_style="bold")
    table.add_column("Cost ($)", justify="right", footer_style="bold")

    for index, provider in enumerate(summary.providers):
        style = TABLE_ROW_STYLES[index % len(TABLE_ROW_STYLES)]
        table.add_row(provider.provider, str(provider.request_count), f"{provider.total_cost:,.6f}", style=style)

    table.columns[1].footer = str(summary.request_count)
    table.columns[2].footer = f"{summary.total_cost:,.6f}"
    console.print(table)
