"""Operator-owned flight inventory.

Small SQLite store of airlines, airports and scheduled flights. The local
inventory adapter searches it like any other supplier.
"""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import List, Optional


@dataclass(frozen=True)
class InventoryAirport:
    id: int
    code: str
    name: str
    city: str
    country: Optional[str] = None


@dataclass(frozen=True)
class InventoryAirline:
    id: int
    code: str
    name: str
    logo: Optional[str] = None


@dataclass(frozen=True)
class InventoryFlight:
    id: int
    airline: InventoryAirline
    flight_number: str
    origin: InventoryAirport
    destination: InventoryAirport
    departure_time: datetime
    arrival_time: datetime
    base_price: float
    aircraft_type: Optional[str] = None
    default_baggage: Optional[int] = None
    default_cabin_baggage: Optional[int] = None

    @property
    def duration_minutes(self) -> int:
        return int((self.arrival_time - self.departure_time).total_seconds() // 60)


_FLIGHT_SELECT = '''
    SELECT f.id, f.flight_number, f.departure_time, f.arrival_time, f.base_price,
           f.aircraft_type, f.default_baggage, f.default_cabin_baggage,
           al.id, al.code, al.name, al.logo,
           o.id, o.code, o.name, o.city, o.country,
           d.id, d.code, d.name, d.city, d.country
    FROM flights f
    JOIN airlines al ON al.id = f.airline_id
    JOIN airports o ON o.id = f.origin_airport_id
    JOIN airports d ON d.id = f.destination_airport_id
'''


def _row_to_flight(row) -> InventoryFlight:
    return InventoryFlight(
        id=row[0],
        flight_number=row[1],
        departure_time=datetime.fromisoformat(row[2]),
        arrival_time=datetime.fromisoformat(row[3]),
        base_price=float(row[4]),
        aircraft_type=row[5],
        default_baggage=row[6],
        default_cabin_baggage=row[7],
        airline=InventoryAirline(id=row[8], code=row[9], name=row[10], logo=row[11]),
        origin=InventoryAirport(id=row[12], code=row[13], name=row[14], city=row[15], country=row[16]),
        destination=InventoryAirport(id=row[17], code=row[18], name=row[19], city=row[20], country=row[21]),
    )


class FlightInventory:
    """SQLite-backed flight inventory."""

    def __init__(self, db_path: str = "flights.db"):
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        if self.db_path != ':memory:':
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._init_db()

    def _init_db(self):
        with self._lock, self._conn:
            self._conn.executescript('''
                CREATE TABLE IF NOT EXISTS airlines (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    code TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    logo TEXT
                );
                CREATE TABLE IF NOT EXISTS airports (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    code TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    city TEXT NOT NULL,
                    country TEXT
                );
                CREATE TABLE IF NOT EXISTS flights (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    airline_id INTEGER NOT NULL REFERENCES airlines(id),
                    flight_number TEXT NOT NULL,
                    origin_airport_id INTEGER NOT NULL REFERENCES airports(id),
                    destination_airport_id INTEGER NOT NULL REFERENCES airports(id),
                    departure_time TEXT NOT NULL,
                    arrival_time TEXT NOT NULL,
                    aircraft_type TEXT,
                    base_price REAL NOT NULL,
                    default_baggage INTEGER,
                    default_cabin_baggage INTEGER
                );
                CREATE INDEX IF NOT EXISTS idx_flights_route
                    ON flights(origin_airport_id, destination_airport_id, departure_time);
            ''')

    def add_airline(self, code: str, name: str, logo: Optional[str] = None) -> int:
        with self._lock, self._conn:
            cursor = self._conn.execute(
                'INSERT INTO airlines (code, name, logo) VALUES (?, ?, ?)',
                (code.upper(), name, logo)
            )
            return cursor.lastrowid

    def add_airport(self, code: str, name: str, city: str, country: Optional[str] = None) -> int:
        with self._lock, self._conn:
            cursor = self._conn.execute(
                'INSERT INTO airports (code, name, city, country) VALUES (?, ?, ?, ?)',
                (code.upper(), name, city, country)
            )
            return cursor.lastrowid

    def add_flight(
        self,
        *,
        airline_id: int,
        flight_number: str,
        origin_airport_id: int,
        destination_airport_id: int,
        departure_time: datetime,
        arrival_time: datetime,
        base_price: float,
        aircraft_type: Optional[str] = None,
        default_baggage: Optional[int] = None,
        default_cabin_baggage: Optional[int] = None,
    ) -> int:
        if arrival_time <= departure_time:
            raise ValueError("arrival_time must be after departure_time")
        with self._lock, self._conn:
            cursor = self._conn.execute('''
                INSERT INTO flights (airline_id, flight_number, origin_airport_id, destination_airport_id,
                                     departure_time, arrival_time, aircraft_type, base_price,
                                     default_baggage, default_cabin_baggage)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (
                airline_id,
                flight_number,
                origin_airport_id,
                destination_airport_id,
                departure_time.isoformat(),
                arrival_time.isoformat(),
                aircraft_type,
                base_price,
                default_baggage,
                default_cabin_baggage,
            ))
            return cursor.lastrowid

    def find_flights(
        self,
        origin_code: str,
        destination_code: str,
        departure_date: date,
        *,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        airline_id: Optional[int] = None,
    ) -> List[InventoryFlight]:
        """Flights on one route and day, earliest departure first."""
        sql = _FLIGHT_SELECT + ' WHERE o.code = ? AND d.code = ? AND substr(f.departure_time, 1, 10) = ?'
        params: list = [origin_code.upper(), destination_code.upper(), departure_date.isoformat()]

        if min_price is not None:
            sql += ' AND f.base_price >= ?'
            params.append(float(min_price))
        if max_price is not None:
            sql += ' AND f.base_price <= ?'
            params.append(float(max_price))
        if airline_id is not None:
            sql += ' AND f.airline_id = ?'
            params.append(int(airline_id))

        sql += ' ORDER BY f.departure_time ASC'

        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_flight(r) for r in rows]

    def get_flight(self, flight_id: int) -> Optional[InventoryFlight]:
        with self._lock:
            row = self._conn.execute(_FLIGHT_SELECT + ' WHERE f.id = ?', (flight_id,)).fetchone()
        return _row_to_flight(row) if row else None

    def count_flights(self) -> int:
        with self._lock:
            return self._conn.execute('SELECT COUNT(*) FROM flights').fetchone()[0]

    def close(self):
        self._conn.close()


_inventory_instance = None
_inventory_lock = threading.Lock()

def get_inventory() -> FlightInventory:
    '''Get or create the global inventory instance.'''
    global _inventory_instance
    with _inventory_lock:
        if _inventory_instance is None:
            from config import load_config
            _inventory_instance = FlightInventory(load_config().inventory_db_path)
        return _inventory_instance
