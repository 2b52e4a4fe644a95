"""
Pytest configuration and shared fixtures.
"""

import random
from datetime import date

import pytest

from production_calendar import Holiday, Shortened, make_uid_factory


CALENDAR_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Производственный календарь на 2026 год</title></head>
<body>
<div class="calendar-list">
  <div class="calendar-list__item">
    <div class="calendar-list__item-body">
      <div class="calendar-list__item-title">Январь</div>
      <ul class="calendar-list__numbers">
        <li class="calendar-list__numbers__item calendar-list__numbers__item_day-off">1
          <div class="calendar-hint"><b>Новогодние каникулы</b></div>
        </li>
        <li class="calendar-list__numbers__item calendar-list__numbers__item_day-off">2
          <div class="calendar-hint"><b>Новогодние каникулы</b></div>
        </li>
        <li class="calendar-list__numbers__item calendar-list__numbers__item_day-off">3<br>
          <div class="calendar-hint">Выходной день</div>
        </li>
        <li class="calendar-list__numbers__item">5</li>
        <li class="calendar-list__numbers__item">6<img src="dot.png"></li>
      </ul>
    </div>
    <div class="calendar-list__item-body">
      <ul class="calendar-list__numbers">
        <li class="calendar-list__numbers__item calendar-list__numbers__item_day-off">31
          <div class="calendar-hint">Ignored second body</div>
        </li>
      </ul>
    </div>
  </div>
  <div class="calendar-list__item">
    <div class="calendar-list__item-body">
      <ul class="calendar-list__numbers">
        <li class="calendar-list__numbers__item calendar-list__numbers__item_shortened">20</li>
        <li class="calendar-list__numbers__item calendar-list__numbers__item_day-off">23
          <div class="calendar-hint">День защитника Отечества</div>
        </li>
      </ul>
    </div>
  </div>
</div>
</body>
</html>
"""


@pytest.fixture
def calendar_page():
    """Saved production calendar page with two months."""
    return CALENDAR_PAGE


@pytest.fixture
def new_year_annotations():
    return {
        date(2026, 1, 1): Holiday("New Year"),
        date(2026, 1, 2): Holiday("New Year"),
        date(2026, 1, 3): Holiday("New Year"),
    }


@pytest.fixture
def mixed_annotations():
    return {
        date(2026, 2, 23): Holiday("Holiday"),
        date(2026, 2, 14): Shortened("Shortened day"),
    }


@pytest.fixture
def seeded_uids():
    """UID factory with a fixed seed, for byte-stable output."""
    return make_uid_factory(rng=random.Random(2026))
