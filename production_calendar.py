from __future__ import annotations

import argparse
import random
import re
import textwrap
import urllib.error
import urllib.request
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from html.parser import HTMLParser
from pathlib import Path
from typing import Callable, ClassVar, Iterable, Mapping, Union

import markdown
import yaml


DEFAULT_SOURCE_URL = "https://hh.ru/article/calendar{year}"
DEFAULT_USER_AGENT = "curl/7.68.0"
DEFAULT_TIMEOUT = 20
DEFAULT_PRODUCT_ID = "-//Work calendar//ical.lexfoxer.com/work//RU"
DEFAULT_CALENDAR_NAME = "Производственный календарь"

SHORTENED_MESSAGE = "Предпраздничный день, на 1 час короче"

UID_ALPHABET = "1234567890abcdef"
UID_LENGTH = 50

MIN_YEAR = 2020
MAX_YEAR = 2100

ONE_DAY = timedelta(days=1)


class MalformedDateKey(ValueError):
    """An annotation key that is not a valid calendar date."""


class InconsistentAnnotation(TypeError):
    """An annotation that is neither a holiday nor a shortened day."""


@dataclass(frozen=True)
class Holiday:
    message: str
    kind: ClassVar[str] = "holiday"


@dataclass(frozen=True)
class Shortened:
    message: str = SHORTENED_MESSAGE
    kind: ClassVar[str] = "shortened"


Annotation = Union[Holiday, Shortened]


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date
    message: str
    kind: str = Holiday.kind

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(f"Range starts after it ends: {self.start} > {self.end}")

    @property
    def days(self) -> list[date]:
        return [self.start + timedelta(days=offset) for offset in range((self.end - self.start).days + 1)]


@dataclass(frozen=True)
class CalendarEvent:
    summary: str
    start: date
    end_exclusive: date
    uid: str

    @classmethod
    def from_range(cls, date_range: DateRange, uid: str) -> CalendarEvent:
        # DTEND on date-only events is the first day after the range.
        return cls(
            summary=date_range.message,
            start=date_range.start,
            end_exclusive=date_range.end + ONE_DAY,
            uid=uid,
        )

    def render(self) -> str:
        return text_block(
            """
            BEGIN:VEVENT
            SUMMARY:{summary}
            DTSTART;VALUE=DATE:{start}
            DTEND;VALUE=DATE:{end}
            UID:{uid}
            END:VEVENT
            """
        ).format(
            summary=escape_text(self.summary),
            start=format_ics_date(self.start),
            end=format_ics_date(self.end_exclusive),
            uid=self.uid,
        )


def parse_date_key(value: object) -> date:
    """Turn an annotation key into a date.

    Accepts ``date`` objects and ``YYYY-M-D`` strings, with or without zero
    padding on month and day.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise MalformedDateKey(f"Unsupported date key: {value!r}")
    match = re.fullmatch(r"(\d{4})-(\d{1,2})-(\d{1,2})", value.strip())
    if not match:
        raise MalformedDateKey(f"Unrecognized date key: {value!r}")
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError as exc:
        raise MalformedDateKey(f"Invalid date key {value!r}: {exc}") from exc


def make_ranges(annotations: Mapping[date | str, Annotation]) -> list[DateRange]:
    """Merge annotated days into ranges of consecutive days with the same annotation.

    Keys are sorted by date first; the mapping's own order is never used.
    Two days merge only when they are one calendar day apart and carry the
    same message and the same kind (holiday or shortened).
    """
    keyed: dict[date, Annotation] = {}
    for key, annotation in annotations.items():
        if not isinstance(annotation, (Holiday, Shortened)):
            raise InconsistentAnnotation(
                f"Annotation for {key!r} is neither a holiday nor a shortened day: {annotation!r}"
            )
        day = parse_date_key(key)
        if day in keyed:
            raise MalformedDateKey(f"Date {day.isoformat()} is annotated more than once")
        keyed[day] = annotation

    ranges: list[DateRange] = []
    current: DateRange | None = None
    for day in sorted(keyed):
        annotation = keyed[day]
        if (
            current is not None
            and current.message == annotation.message
            and current.kind == annotation.kind
            and day - current.end == ONE_DAY
        ):
            current = replace(current, end=day)
            continue
        if current is not None:
            ranges.append(current)
        current = DateRange(start=day, end=day, message=annotation.message, kind=annotation.kind)
    if current is not None:
        ranges.append(current)
    return ranges


def text_block(template: str) -> str:
    """Dedent an indented multi-line template and drop surrounding blank lines."""
    lines = [line.rstrip() for line in textwrap.dedent(template).split("\n")]
    while lines and not lines[0]:
        lines.pop(0)
    while lines and not lines[-1]:
        lines.pop()
    return "\n".join(lines)


def escape_text(value: str) -> str:
    # RFC 5545 TEXT values: backslash first, then the separators.
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def format_ics_date(value: date) -> str:
    return value.strftime("%Y%m%d")


def make_uid_factory(
    length: int = UID_LENGTH,
    alphabet: str = UID_ALPHABET,
    rng: random.Random | None = None,
) -> Callable[[], str]:
    """Return a callable producing fixed-length random ids, never the same one twice."""
    if length < 1:
        raise ValueError(f"UID length must be positive, got {length}")
    if len(set(alphabet)) < 2:
        raise ValueError("UID alphabet needs at least two distinct characters")
    chooser = rng or random.SystemRandom()
    capacity = len(set(alphabet)) ** length
    issued: set[str] = set()

    def make_uid() -> str:
        if len(issued) >= capacity:
            raise ValueError(
                f"All {capacity} UIDs of length {length} are used up; increase the UID length"
            )
        while True:
            uid = "".join(chooser.choice(alphabet) for _ in range(length))
            if uid not in issued:
                issued.add(uid)
                return uid

    return make_uid


def serialize_calendar(
    ranges: Iterable[DateRange],
    uid_factory: Callable[[], str] | None = None,
    name: str = DEFAULT_CALENDAR_NAME,
    product_id: str = DEFAULT_PRODUCT_ID,
) -> str:
    make_uid = uid_factory or make_uid_factory()
    header = text_block(
        """
        BEGIN:VCALENDAR
        VERSION:2.0
        PRODID:{product_id}
        X-WR-CALNAME:{name}
        NAME:{name}
        """
    ).format(product_id=product_id, name=escape_text(name))
    blocks = [header]
    seen: set[str] = set()
    for item in ranges:
        uid = make_uid()
        if not uid or uid in seen:
            raise ValueError(f"UID factory returned an empty or repeated UID: {uid!r}")
        seen.add(uid)
        blocks.append(CalendarEvent.from_range(item, uid).render())
    blocks.append("END:VCALENDAR")
    return "\n".join(blocks)


def build_calendar(
    annotations: Mapping[date | str, Annotation],
    uid_factory: Callable[[], str] | None = None,
    name: str = DEFAULT_CALENDAR_NAME,
    product_id: str = DEFAULT_PRODUCT_ID,
) -> str:
    return serialize_calendar(
        make_ranges(annotations),
        uid_factory=uid_factory,
        name=name,
        product_id=product_id,
    )


# Tags that never get a closing tag.
_VOID_TAGS = {
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "param", "source", "track", "wbr",
}


@dataclass
class _DayCell:
    depth: int
    day_off: bool
    shortened: bool
    number: list[str] = field(default_factory=list)
    hint: list[str] = field(default_factory=list)


class _CalendarPageParser(HTMLParser):
    """Collect annotated days from the production calendar page.

    Each ``calendar-list__item`` is one month; only its first
    ``calendar-list__item-body`` holds the day grid.
    """

    def __init__(self, year: int) -> None:
        super().__init__()
        self.year = year
        self.annotations: dict[date, Annotation] = {}
        self._stack: list[str] = []
        self._month = 0
        self._item_depth: int | None = None
        self._item_has_body = False
        self._body_depth: int | None = None
        self._day: _DayCell | None = None
        self._hint_depth: int | None = None

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag.lower() in _VOID_TAGS:
            return
        self._stack.append(tag.lower())
        depth = len(self._stack)
        classes = set()
        for key, value in attrs:
            if key.lower() == "class" and value:
                classes.update(value.split())

        if "calendar-list__item" in classes:
            self._item_depth = depth
            self._item_has_body = False
        elif (
            "calendar-list__item-body" in classes
            and self._item_depth is not None
            and not self._item_has_body
        ):
            self._item_has_body = True
            self._body_depth = depth
            self._month += 1
        elif "calendar-list__numbers__item" in classes and self._body_depth is not None:
            # A new cell implicitly closes an unclosed previous one.
            if self._day is not None:
                self._finish_day(self._day)
                self._hint_depth = None
            self._day = _DayCell(
                depth=depth,
                day_off="calendar-list__numbers__item_day-off" in classes,
                shortened="calendar-list__numbers__item_shortened" in classes,
            )
        elif "calendar-hint" in classes and self._day is not None and self._hint_depth is None:
            self._hint_depth = depth

    def handle_endtag(self, tag: str) -> None:
        tag = tag.lower()
        if tag not in self._stack:
            return
        while self._stack:
            if self._stack.pop() == tag:
                break
        self._leave(len(self._stack))

    def handle_data(self, data: str) -> None:
        if self._day is None:
            return
        if self._hint_depth is not None:
            self._day.hint.append(data)
        elif len(self._stack) == self._day.depth:
            self._day.number.append(data)

    def close(self) -> None:
        super().close()
        self._leave(0)

    def _leave(self, depth: int) -> None:
        if self._hint_depth is not None and depth < self._hint_depth:
            self._hint_depth = None
        if self._day is not None and depth < self._day.depth:
            self._finish_day(self._day)
            self._day = None
        if self._body_depth is not None and depth < self._body_depth:
            self._body_depth = None
        if self._item_depth is not None and depth < self._item_depth:
            self._item_depth = None

    def _finish_day(self, cell: _DayCell) -> None:
        if not cell.day_off and not cell.shortened:
            return
        number = "".join(cell.number).strip()
        key = f"{self.year}-{self._month}-{number}"
        if not number.isdigit():
            raise MalformedDateKey(f"Unrecognized day number in calendar cell: {key!r}")
        day = parse_date_key(key)
        if cell.shortened:
            annotation: Annotation = Shortened()
        else:
            annotation = Holiday("".join(cell.hint).strip().replace("Выходной день", "Выходной"))
        self.annotations[day] = annotation


def parse_annotations(html: str, year: int) -> dict[date, Annotation]:
    parser = _CalendarPageParser(year)
    parser.feed(html)
    parser.close()
    return parser.annotations


def calendar_url(year: int, template: str = DEFAULT_SOURCE_URL) -> str:
    return template.format(year=year) if "{year}" in template else template


def read_source_html(
    source: str,
    user_agent: str = DEFAULT_USER_AGENT,
    timeout: float = DEFAULT_TIMEOUT,
) -> str:
    if source.startswith("http://") or source.startswith("https://"):
        request = urllib.request.Request(source, headers={"User-Agent": user_agent})
        try:
            with urllib.request.urlopen(request, timeout=timeout) as response:
                if response.status != 200:
                    raise RuntimeError(f"Cannot fetch data from {source} (HTTP {response.status})")
                return response.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as exc:
            raise RuntimeError(f"Cannot fetch data from {source} (HTTP {exc.code})") from exc
    return Path(source).read_text(encoding="utf-8")


def load_config(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    return data if isinstance(data, dict) else {}


def resolve_config_path(value: object, base_dir: Path) -> Path | None:
    if value is None:
        return None
    path = Path(str(value))
    return path if path.is_absolute() else base_dir / path


def build_index_html(output_dir: Path, readme_path: Path, title: str = DEFAULT_CALENDAR_NAME) -> Path:
    """Write index.html with the README and links to every calendar in output_dir."""
    readme_html = ""
    if readme_path.exists():
        md = markdown.Markdown(extensions=["fenced_code", "tables"])
        readme_html = md.convert(readme_path.read_text(encoding="utf-8"))

    items = []
    for path in sorted(output_dir.glob("*.ics"), key=lambda p: p.stem, reverse=True):
        size_kb = path.stat().st_size / 1024
        items.append(f'        <li><a href="{path.name}">{path.stem}</a> ({size_kb:.1f} KB)</li>')
    files_html = "\n".join(items) if items else "        <li>No calendars generated yet.</li>"

    html = f"""<!DOCTYPE html>
<html lang="ru">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
</head>
<body>
    <h1>{title}</h1>
    {readme_html}
    <h2>Calendars</h2>
    <ul>
{files_html}
    </ul>
</body>
</html>
"""
    index_path = output_dir / "index.html"
    index_path.write_text(html, encoding="utf-8")
    return index_path


def parse_year(value: str) -> int:
    value = value.strip()
    if not re.fullmatch(r"\d{4}", value):
        raise argparse.ArgumentTypeError(
            f"Year must be four digits, got {value!r}. Use --year 2026 (or pass 2026 as positional arg)."
        )
    year = int(value)
    if year < MIN_YEAR or year > MAX_YEAR:
        raise argparse.ArgumentTypeError(
            f"Year looks invalid. Expected a year between {MIN_YEAR} and {MAX_YEAR}."
        )
    return year


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Build an iCal file of days off and shortened days from the production calendar."
    )
    parser.add_argument(
        "year",
        nargs="?",
        type=parse_year,
        default=None,
        help="Calendar year (default: current year)",
    )
    parser.add_argument(
        "--year",
        "-y",
        dest="year_flag",
        type=parse_year,
        default=None,
        help="Calendar year, takes precedence over the positional argument",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(__file__).with_name("config.yaml"),
        help="YAML config file (optional)",
    )
    parser.add_argument(
        "--source",
        default=None,
        help="Source URL (may contain {year}) or path to a saved HTML page",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Directory to write <year>.ics into",
    )
    parser.add_argument(
        "--calendar-name",
        default=None,
        help="Display name of the generated calendar",
    )
    parser.add_argument(
        "--index",
        action="store_true",
        help="Also write index.html listing generated calendars",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Print every merged range",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    year = args.year_flag or args.year or date.today().year
    if not MIN_YEAR <= year <= MAX_YEAR:
        parser.error(f"Year looks invalid. Expected a year between {MIN_YEAR} and {MAX_YEAR}.")

    config = load_config(args.config) if args.config else {}
    config_base = args.config.parent if args.config else Path.cwd()
    source_template = str(args.source or config.get("source_url") or DEFAULT_SOURCE_URL)
    output_dir = args.output_dir or resolve_config_path(config.get("output_dir") or ".", config_base)
    calendar_name = str(args.calendar_name or config.get("calendar_name") or DEFAULT_CALENDAR_NAME)
    product_id = str(config.get("product_id") or DEFAULT_PRODUCT_ID)
    user_agent = str(config.get("user_agent") or DEFAULT_USER_AGENT)
    write_index = args.index or bool(config.get("build_index", False))
    debug = args.debug or bool(config.get("debug", False))
    try:
        timeout = float(config.get("timeout", DEFAULT_TIMEOUT))
        uid_length = int(config.get("uid_length", UID_LENGTH))
    except (TypeError, ValueError) as exc:
        raise SystemExit(f"Error: invalid timeout or uid_length in {args.config}: {exc}") from exc

    source = calendar_url(year, source_template)
    try:
        html = read_source_html(source, user_agent=user_agent, timeout=timeout)
        annotations = parse_annotations(html, year)
        ranges = make_ranges(annotations)
    except (OSError, RuntimeError, ValueError) as exc:
        raise SystemExit(f"Error: {exc}") from exc

    if not annotations:
        print(f"Warning: no annotated days parsed for {year} from {source}")

    if debug:
        print(f"{year}: days={len(annotations)} ranges={len(ranges)}")
        for item in ranges:
            print(f"- {item.start.isoformat()}..{item.end.isoformat()} {item.kind}: {item.message}")

    try:
        content = serialize_calendar(
            ranges,
            uid_factory=make_uid_factory(length=uid_length),
            name=calendar_name,
            product_id=product_id,
        )
    except ValueError as exc:
        raise SystemExit(f"Error: {exc}") from exc

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / f"{year}.ics"
    output_path.write_text(content, encoding="utf-8")
    print(f"Wrote {output_path}")

    if write_index:
        readme_path = Path(__file__).parent / "README.md"
        index_path = build_index_html(output_dir, readme_path, title=calendar_name)
        print(f"Wrote {index_path}")


if __name__ == "__main__":
    main()
