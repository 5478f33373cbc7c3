"""Chart generation using Plotly."""

from typing import List

import plotly.graph_objects as go

from ..engine.fixed_point import from_fixed
from ..engine.pool import PoolSnapshot

THEME = {
    "text": "#e8eaed",
    "text_secondary": "#9aa0a6",
    "grid": "rgba(30, 33, 36, 0.8)",
    "series": ["#00d4ff", "#ffab00", "#00e676", "#ff5252", "#b388ff", "#5f6368"],
}


def apply_dark_layout(fig: go.Figure, title: str, x_title: str, y_title: str, showlegend: bool = True) -> None:
    """Apply the dark chart layout shared by every figure."""
    fig.update_layout(
        title={
            "text": title,
            "x": 0,
            "xanchor": "left",
            "font": {"size": 11, "color": THEME["text_secondary"]}
        },
        xaxis_title=x_title,
        yaxis_title=y_title,
        hovermode="x unified",
        template="plotly_dark",
        height=340,
        margin=dict(l=50, r=20, t=40, b=40),
        showlegend=showlegend,
        legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="left", x=0),
        font={"color": THEME["text"], "size": 11},
        xaxis=dict(gridcolor=THEME["grid"], zerolinecolor=THEME["grid"]),
        yaxis=dict(gridcolor=THEME["grid"], zerolinecolor=THEME["grid"]),
    )


def _color(i: int) -> str:
    return THEME["series"][i % len(THEME["series"])]


def create_accumulator_chart(snapshots: List[PoolSnapshot]) -> go.Figure:
    """Reward per unit of weighted principal, one line per stream."""
    times = [s.t / 86_400 for s in snapshots]
    tokens = list(snapshots[-1].streams) if snapshots else []

    fig = go.Figure()
    for i, token in enumerate(tokens):
        fig.add_trace(go.Scatter(
            x=times,
            y=[
                from_fixed(s.streams[token].accumulated_per_unit) if token in s.streams else None
                for s in snapshots
            ],
            name=token,
            mode="lines",
            line=dict(color=_color(i), width=2, shape="hv"),
        ))

    apply_dark_layout(fig, "ACCUMULATED REWARD PER UNIT", "Days", "Reward / weighted unit")
    return fig


def create_principal_chart(snapshots: List[PoolSnapshot]) -> go.Figure:
    """Raw and weighted principal over time."""
    times = [s.t / 86_400 for s in snapshots]

    fig = go.Figure()
    fig.add_trace(go.Scatter(
        x=times,
        y=[from_fixed(s.total_principal) for s in snapshots],
        name="Principal",
        mode="lines",
        line=dict(color=_color(0), width=2, shape="hv"),
    ))
    fig.add_trace(go.Scatter(
        x=times,
        y=[from_fixed(s.total_weighted_principal) for s in snapshots],
        name="Weighted principal",
        mode="lines",
        line=dict(color=_color(1), width=2, dash="dot", shape="hv"),
    ))

    apply_dark_layout(fig, "STAKED PRINCIPAL", "Days", "Tokens")
    return fig


def create_earned_chart(snapshots: List[PoolSnapshot], token: str) -> go.Figure:
    """Claimable reward per account for one stream."""
    times = [s.t / 86_400 for s in snapshots]
    accounts = sorted({account for s in snapshots for (account, t) in s.earned if t == token})

    fig = go.Figure()
    for i, account in enumerate(accounts):
        fig.add_trace(go.Scatter(
            x=times,
            y=[from_fixed(s.earned.get((account, token), 0)) for s in snapshots],
            name=account,
            mode="lines",
            line=dict(color=_color(i), width=2),
        ))

    apply_dark_layout(fig, f"CLAIMABLE {token}", "Days", token)
    return fig
