"""Rich terminal display for habit-rank."""

from __future__ import annotations

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from habit_rank.models import BadgeRarity, BadgeTier, Difficulty, XpSource

console = Console()

TIER_COLORS: dict[BadgeTier, str] = {
    BadgeTier.BRONZE: "dark_orange3",
    BadgeTier.SILVER: "grey70",
    BadgeTier.GOLD: "gold1",
    BadgeTier.PLATINUM: "deep_sky_blue1",
}

RARITY_COLORS: dict[BadgeRarity, str] = {
    BadgeRarity.COMMON: "white",
    BadgeRarity.RARE: "blue",
    BadgeRarity.EPIC: "magenta",
    BadgeRarity.LEGENDARY: "yellow",
}

DIFFICULTY_COLORS: dict[Difficulty, str] = {
    Difficulty.EASY: "green",
    Difficulty.MEDIUM: "yellow",
    Difficulty.HARD: "dark_orange",
    Difficulty.EXTREME: "red1",
}

SOURCE_ICONS: dict[XpSource, str] = {
    XpSource.HABIT_COMPLETE: "✅",
    XpSource.STREAK_BONUS: "\U0001f525",
    XpSource.PERFECT_DAY: "\U0001f3af",
    XpSource.BADGE_UNLOCK: "\U0001f3c5",
    XpSource.CHALLENGE_COMPLETE: "\U0001f3c6",
}


def format_number(n: int) -> str:
    """Format large numbers: 421543 -> '421.5K', 1200 -> '1,200', 1234567 -> '1.2M'."""
    if n < 0:
        return "-" + format_number(-n)
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 10_000:
        return f"{n / 1_000:.1f}K"
    return f"{n:,}"


def _xp_bar(current: int, total: int, width: int = 20) -> str:
    """Render a progress bar as text: [████████░░░░░░░░░░░░]."""
    if total <= 0:
        return "[" + "█" * width + "]"
    ratio = max(0.0, min(current / total, 1.0))
    filled = int(ratio * width)
    empty = width - filled
    return "[" + "█" * filled + "░" * empty + "]"


def print_error(message: str, kind: str = "error") -> None:
    console.print(f"[red]{message}[/] [dim]({kind})[/]")


def print_completion_result(result: dict) -> None:
    """Print the outcome of logging a habit."""
    streak = result["streak"]
    lines: list[str] = [""]
    lines.append(f"  \U0001f525 Streak: [bold]{streak['current_streak']}[/] days"
                 f"  (best {streak['longest_streak']})")
    lines.append(f"  ⚡ XP gained: [bold]+{format_number(result['xp_granted'])}[/]"
                 f"  (total {format_number(result['total_xp'])})")
    if result.get("level_up"):
        lines.append(f"  [bold yellow]LEVEL UP! You are now level {result['level']}[/]")

    for badge in result.get("new_badges", []):
        lines.append(f"  \U0001f3c5 Badge unlocked: [bold]{badge['name']}[/] (+{badge['xp_reward']} XP)")

    for update in result.get("challenge_updates", []):
        if update["completed"]:
            lines.append(f"  \U0001f3c6 Challenge complete: [bold]{update['title']}[/]"
                         f" (+{update['xp_awarded']} XP)")
        else:
            lines.append(f"  ⏳ {update['title']}: {update['progress']}/{update['target_value']}")
    lines.append("")

    console.print(Panel(
        "\n".join(lines),
        title="[bold]Habit Logged[/]",
        box=box.ROUNDED,
        border_style="green",
        width=60,
    ))


def print_undo_result(result: dict) -> None:
    streak = result["streak"]
    console.print(Panel(
        f"\n  Streak: {streak['current_streak']} days\n"
        f"  XP reversed: -{format_number(result['xp_reversed'])}"
        f"  (total {format_number(result['total_xp'])})\n",
        title="[bold]Log Undone[/]",
        box=box.ROUNDED,
        border_style="grey50",
        width=60,
    ))


def print_xp_breakdown(data: dict) -> None:
    """Print level, XP bar and period/source totals."""
    progress = data["level_progress"]
    lines: list[str] = [""]
    lines.append(f"  [bold]Level {data['level']}[/]")
    bar = _xp_bar(progress["xp_in_current_level"], progress["xp_needed_for_next_level"])
    if progress["xp_needed_for_next_level"] > 0:
        lines.append(
            f"  {bar} {format_number(progress['xp_in_current_level'])}/"
            f"{format_number(progress['xp_needed_for_next_level'])} XP ({progress['progress_percent']}%)"
        )
    else:
        lines.append(f"  {bar} MAX LEVEL")
    lines.append(f"  Total: [bold]{format_number(data['total_xp'])}[/] XP")
    lines.append("")
    lines.append(
        f"  Today: {format_number(data['xp_today'])}  |  "
        f"Week: {format_number(data['xp_this_week'])}  |  "
        f"Month: {format_number(data['xp_this_month'])}"
    )
    sources = data.get("source_breakdown", [])
    if sources:
        lines.append("")
        lines.append("  [bold]By Source:[/]")
        for row in sources:
            icon = SOURCE_ICONS[XpSource(row["source"])]
            lines.append(
                f"  {icon} {row['source']:<20s} {format_number(row['total_xp']):>8s}"
                f"  ({row['percentage']}%)"
            )
    lines.append("")

    console.print(Panel(
        "\n".join(lines),
        title="[bold]HABIT RANK[/]",
        box=box.ROUNDED,
        border_style="gold1",
        width=60,
    ))


def print_xp_history(page: dict) -> None:
    table = Table(title="XP History", box=box.ROUNDED, show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("When", width=20)
    table.add_column("Source", min_width=20)
    table.add_column("XP", justify="right")

    for txn in page["transactions"]:
        icon = SOURCE_ICONS[XpSource(txn["source"])]
        amount = txn["amount"]
        color = "green" if amount > 0 else "red"
        table.add_row(icon, txn["created_at"][:19].replace("T", " "), txn["source_name"],
                      f"[{color}]{amount:+d}[/{color}]")

    console.print(table)
    if page.get("has_more"):
        console.print(f"[dim]Showing {len(page['transactions'])} of {page['total']}[/]")


def print_badges(badges: list[dict]) -> None:
    """Print all badges, earned first, then by progress."""
    earned = [b for b in badges if b["state"] == "earned"]
    locked = [b for b in badges if b["state"] != "earned"]
    earned.sort(key=lambda b: b.get("earned_at") or "", reverse=True)
    locked.sort(key=lambda b: b.get("progress_percent", 0), reverse=True)

    table = Table(title="Badges", box=box.ROUNDED, show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Badge", min_width=20)
    table.add_column("Tier", width=10)
    table.add_column("Progress", min_width=18)
    table.add_column("XP", justify="right")

    for badge in earned + locked:
        icon = "✅" if badge["state"] == "earned" else "⏳"
        color = TIER_COLORS[BadgeTier(badge["tier"])]
        bar = _xp_bar(badge["progress"], badge["threshold"], width=10)
        table.add_row(
            icon,
            f"[bold]{badge['name']}[/]\n{badge['description']}",
            f"[{color}]{badge['tier'].upper()}[/{color}]",
            f"{bar} {badge['progress_percent']}%",
            str(badge["xp_reward"]),
        )

    console.print(table)


def print_badge_detail(badge: dict) -> None:
    color = TIER_COLORS[BadgeTier(badge["tier"])]
    rarity_color = RARITY_COLORS[BadgeRarity(badge["rarity"])]
    lines = [
        "",
        f"  {badge['icon']} [bold]{badge['name']}[/]",
        f"  {badge['description']}",
        "",
        f"  Tier:     [{color}]{badge['tier'].upper()}[/{color}]",
        f"  Rarity:   [{rarity_color}]{badge['rarity'].upper()}[/{rarity_color}]",
        f"  Progress: {_xp_bar(badge['progress'], badge['threshold'], width=15)} "
        f"{badge['progress']}/{badge['threshold']}",
        f"  Reward:   {badge['xp_reward']} XP",
    ]
    if badge.get("earned_at"):
        lines.append(f"  Earned:   {badge['earned_at'][:10]}")
    lines.append("")
    console.print(Panel("\n".join(lines), box=box.ROUNDED, border_style=color, width=60))


def print_challenges(challenges: list[dict]) -> None:
    table = Table(title="Challenges", box=box.ROUNDED, show_header=True, header_style="bold")
    table.add_column("ID", justify="right")
    table.add_column("Challenge", min_width=24)
    table.add_column("Difficulty", width=10)
    table.add_column("Progress", min_width=18)
    table.add_column("Ends", width=10)
    table.add_column("Players", justify="right")

    for ch in challenges:
        color = DIFFICULTY_COLORS[Difficulty(ch["difficulty"])]
        if ch["joined"]:
            bar = _xp_bar(ch["progress"], ch["target_value"], width=10)
            progress = f"{bar} {ch['progress']}/{ch['target_value']}"
            if ch["participant_state"] == "completed":
                progress = "✅ " + progress
        else:
            progress = "[dim]not joined[/]"
        table.add_row(
            str(ch["id"]),
            f"[bold]{ch['title']}[/]\n{ch['description']}",
            f"[{color}]{ch['difficulty'].upper()}[/{color}]",
            progress,
            ch["end_date"],
            str(ch["participant_count"]),
        )

    console.print(table)


def print_leaderboard(entries: list[dict], highlight_user: str | None = None) -> None:
    """Print a challenge leaderboard, highlighting the current user."""
    if not entries:
        console.print("[dim]No participants yet.[/]")
        return

    table = Table(title="Leaderboard", box=box.ROUNDED, show_header=True, header_style="bold")
    table.add_column("#", justify="right", width=4)
    table.add_column("User", min_width=16)
    table.add_column("Progress", justify="right")
    table.add_column("State")
    table.add_column("Completed", width=10)

    for entry in entries:
        is_you = highlight_user and entry["user_id"] == highlight_user
        style = "bold cyan" if is_you else ""
        rank = f"={entry['rank']}" if entry["is_tied"] else str(entry["rank"])
        name = entry["user_id"] + (" (you)" if is_you else "")
        table.add_row(
            rank, name, str(entry["progress"]), entry["state"],
            (entry["completed_at"] or "")[:10], style=style,
        )

    console.print(table)


def print_challenge_history(page: dict) -> None:
    history = page["history"]
    if not history:
        console.print("[dim]No completed challenges yet.[/]")
        return
    table = Table(title="Completed Challenges", box=box.ROUNDED, show_header=True, header_style="bold")
    table.add_column("Challenge", min_width=24)
    table.add_column("Difficulty")
    table.add_column("XP", justify="right")
    table.add_column("Completed", width=10)
    for item in history:
        color = DIFFICULTY_COLORS[Difficulty(item["difficulty"])]
        table.add_row(
            item["title"],
            f"[{color}]{item['difficulty']}[/{color}]",
            str(item["xp_reward"]),
            (item["completed_at"] or "")[:10],
        )
    console.print(table)
