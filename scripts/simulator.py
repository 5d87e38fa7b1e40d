#!/usr/bin/env python3
"""
Range Receiver Ride Simulator

Generates realistic electric unicycle telemetry (acceleration, cruising,
braking, voltage sag under load) and sends it to the receiver, or feeds it
straight into an in-process estimation manager.

Usage:
    python simulator.py                          # 30-minute ride, 10x speed
    python simulator.py --duration 60            # 60-minute ride
    python simulator.py --speed instant          # Send as fast as possible
    python simulator.py --drop-at 12             # Lose connection at minute 12
    python simulator.py --charge-at 20           # Stop to charge at minute 20
    python simulator.py --local                  # No server, print estimates
    python simulator.py --url http://ip:8080     # Custom server URL
"""

import argparse
import math
import random
import sys
import time
from typing import List, Optional

import requests

from range_receiver.estimation import energy_percent_to_voltage, voltage_to_energy_percent

SAMPLE_INTERVAL_SECONDS = 1.0


class RideSimulator:
    """Simulates one EUC ride, one sample per simulated second."""

    # Wheel constants
    INTERNAL_RESISTANCE_OHMS = 0.12
    ROLLING_WH_PER_KM = 12.0
    AERO_WH_PER_KM_PER_KMH = 0.35
    CHARGER_POWER_W = 600.0

    def __init__(
        self,
        server_url: str = "http://localhost:8080",
        duration_minutes: int = 30,
        start_battery: float = 95.0,
        cruise_speed: float = 30.0,
        battery_capacity_wh: float = 2000.0,
        cell_count: int = 20,
        drop_at_minute: Optional[float] = None,
        drop_seconds: int = 45,
        charge_at_minute: Optional[float] = None,
        charge_minutes: int = 10,
        batch_size: int = 10,
    ):
        self.server_url = server_url.rstrip('/')
        self.duration_minutes = duration_minutes
        self.cruise_speed = cruise_speed
        self.battery_capacity_wh = battery_capacity_wh
        self.cell_count = cell_count
        self.drop_at_minute = drop_at_minute
        self.drop_seconds = drop_seconds
        self.charge_at_minute = charge_at_minute
        self.charge_minutes = charge_minutes
        self.batch_size = batch_size

        # Ride state
        self.start_ms = int(time.time() * 1000)
        self.energy_percent = start_battery
        self.trip_distance_km = 0.0
        self.current_speed = 0.0
        self.is_charging = False
        self.samples_dropped = 0

    def generate_sample(self, elapsed_seconds: float) -> dict:
        """Advance the ride by one interval and return the telemetry payload."""
        minutes = elapsed_seconds / 60.0
        self.is_charging = self._in_charging_stop(minutes)

        if self.is_charging:
            self.current_speed = 0.0
            power = 0.0
            added_wh = self.CHARGER_POWER_W * SAMPLE_INTERVAL_SECONDS / 3600.0
            self.energy_percent = min(100.0, self.energy_percent + added_wh / self.battery_capacity_wh * 100.0)
        else:
            progress = elapsed_seconds / (self.duration_minutes * 60.0)
            target = self._calculate_speed(progress)
            # Limit acceleration to ~2 km/h per second
            delta = max(-3.0, min(2.0, target - self.current_speed))
            self.current_speed = max(0.0, self.current_speed + delta + random.uniform(-0.5, 0.5))

            efficiency = self.ROLLING_WH_PER_KM + self.AERO_WH_PER_KM_PER_KMH * self.current_speed
            power = efficiency * self.current_speed + max(0.0, delta) * 120.0
            distance = self.current_speed * SAMPLE_INTERVAL_SECONDS / 3600.0
            self.trip_distance_km += distance
            self.energy_percent = max(
                0.0, self.energy_percent - power * SAMPLE_INTERVAL_SECONDS / 3600.0 / self.battery_capacity_wh * 100.0
            )

        rest_voltage = energy_percent_to_voltage(self.energy_percent, self.cell_count)
        current = power / rest_voltage if rest_voltage > 0 else 0.0
        voltage = rest_voltage - current * self.INTERNAL_RESISTANCE_OHMS + random.uniform(-0.05, 0.05)
        if self.is_charging:
            voltage = rest_voltage + 0.8

        return {
            'timestamp': self.start_ms + int(elapsed_seconds * 1000),
            'voltage': round(voltage, 2),
            'power': round(power, 1),
            'current': round(current, 2),
            'speed': round(self.current_speed, 2),
            'trip_distance': round(self.trip_distance_km, 4),
            'battery_percent': round(voltage_to_energy_percent(rest_voltage, self.cell_count)),
            'temperature': 30.0,
            'is_charging': self.is_charging,
        }

    def _calculate_speed(self, progress: float) -> float:
        """Target speed for the ride progress: accelerate, cruise, slow down."""
        if progress < 0.05:
            return self.cruise_speed * (progress / 0.05)
        elif progress < 0.9:
            variation = math.sin(progress * 40) * 6
            return self.cruise_speed + variation
        return self.cruise_speed * max(0.0, 1 - (progress - 0.9) / 0.1)

    def _in_charging_stop(self, minutes: float) -> bool:
        if self.charge_at_minute is None:
            return False
        return self.charge_at_minute <= minutes < self.charge_at_minute + self.charge_minutes

    def _in_connection_drop(self, elapsed_seconds: float) -> bool:
        if self.drop_at_minute is None:
            return False
        start = self.drop_at_minute * 60
        return start <= elapsed_seconds < start + self.drop_seconds

    def samples(self):
        """Yield every payload the wheel would deliver, skipping the dropped ones."""
        total_seconds = int(self.duration_minutes * 60)
        for second in range(0, total_seconds, int(SAMPLE_INTERVAL_SECONDS)):
            sample = self.generate_sample(float(second))
            if self._in_connection_drop(second):
                self.samples_dropped += 1
                continue
            yield sample

    def send_batch(self, batch: List[dict]) -> Optional[dict]:
        """Send samples to the server; returns the estimate from the response."""
        try:
            response = requests.post(f"{self.server_url}/api/range/samples", json=batch, timeout=5)
        except requests.RequestException as e:
            print(f"\nFailed to send: {e}")
            return None
        if response.status_code != 200:
            print(f"\nServer rejected batch: {response.status_code} {response.text}")
            return None
        return response.json().get('estimate')

    def run(self, realtime_multiplier: Optional[float] = 10.0):
        """Run against the server, pacing batches by realtime_multiplier (None = no pacing)."""
        self._print_header(f"Server: {self.server_url}")
        batch = []
        sent = 0
        estimate = None
        try:
            for sample in self.samples():
                batch.append(sample)
                if len(batch) >= self.batch_size:
                    estimate = self.send_batch(batch) or estimate
                    sent += len(batch)
                    batch = []
                    self._print_status(sample, estimate, sent)
                    if realtime_multiplier:
                        time.sleep(self.batch_size * SAMPLE_INTERVAL_SECONDS / realtime_multiplier)
            if batch:
                estimate = self.send_batch(batch) or estimate
                sent += len(batch)
        except KeyboardInterrupt:
            print("\n\nSimulation interrupted.")
        self._print_summary(sent, estimate)

    def run_local(self):
        """Feed the ride into an in-process estimation manager."""
        from range_receiver.services.range_estimation_service import RangeEstimationManager
        from range_receiver.utils.sample_parser import SampleParser

        self._print_header("Local in-process estimation")
        manager = RangeEstimationManager(
            battery_capacity_wh=self.battery_capacity_wh,
            cell_count=self.cell_count,
        )
        processed = 0
        estimate = None
        for payload in self.samples():
            fields = SampleParser.parse(payload, cell_count=self.cell_count)
            result = manager.process_sample(
                SampleParser.to_battery_sample(fields),
                is_charging=fields['is_charging'],
                received_at_ms=fields['timestamp'],
            )
            estimate = result.to_dict() if result else None
            processed += 1
            if processed % 60 == 0:
                self._print_status(payload, estimate, processed)
        self._print_summary(processed, estimate)
        summary = manager.trip_summary() or {}
        print(f"  Segments:         {len(summary.get('segments', []))}")
        print(f"  Charging Events:  {len(summary.get('charging_events', []))}")

    def _print_header(self, target: str):
        print("━" * 60)
        print("  Range Receiver Ride Simulator")
        print("━" * 60)
        print(f"  {target}")
        print(f"  Duration:    {self.duration_minutes} minutes")
        print(f"  Battery:     {self.energy_percent:.0f}% of {self.battery_capacity_wh:.0f}Wh ({self.cell_count}S)")
        if self.drop_at_minute is not None:
            print(f"  Drop:        {self.drop_seconds}s at minute {self.drop_at_minute}")
        if self.charge_at_minute is not None:
            print(f"  Charge:      {self.charge_minutes}min at minute {self.charge_at_minute}")
        print("━" * 60)

    def _print_status(self, sample: dict, estimate: Optional[dict], count: int):
        range_km = estimate.get('range_km') if estimate else None
        status = estimate.get('status') if estimate else '-'
        range_text = f"{range_km:6.1f} km" if range_km is not None else "    -- km"
        line = (
            f"\r  {'CHG' if sample['is_charging'] else 'RIDE'} | "
            f"Speed: {sample['speed']:5.1f} km/h | "
            f"Dist: {sample['trip_distance']:6.2f} km | "
            f"Batt: {sample['battery_percent']:3.0f}% | "
            f"Range: {range_text} ({status}) | "
            f"Samples: {count}"
        )
        print(line, end='', flush=True)

    def _print_summary(self, count: int, estimate: Optional[dict]):
        print("\n")
        print("━" * 60)
        print("  Simulation Complete")
        print("━" * 60)
        print(f"  Distance:         {self.trip_distance_km:.2f} km")
        print(f"  Final Battery:    {self.energy_percent:.1f}%")
        print(f"  Samples Sent:     {count}")
        print(f"  Samples Dropped:  {self.samples_dropped}")
        if estimate:
            print(f"  Final Estimate:   {estimate.get('range_km')} km ({estimate.get('status')})")
        print("━" * 60)


def main():
    parser = argparse.ArgumentParser(
        description='Range Receiver Ride Simulator',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python simulator.py                          # 30-minute ride at 10x speed
  python simulator.py --duration 60 --speed instant
  python simulator.py --drop-at 12 --drop-seconds 90
  python simulator.py --charge-at 20 --charge-minutes 15
  python simulator.py --local                  # No server needed
        """
    )

    parser.add_argument('--url', default='http://localhost:8080', help='Server URL (default: http://localhost:8080)')
    parser.add_argument('--duration', type=int, default=30, help='Ride duration in minutes (default: 30)')
    parser.add_argument('--battery', type=float, default=95.0, help='Starting battery percentage (default: 95)')
    parser.add_argument('--cruise', type=float, default=30.0, help='Cruise speed in km/h (default: 30)')
    parser.add_argument('--capacity', type=float, default=2000.0, help='Battery capacity in Wh (default: 2000)')
    parser.add_argument('--cells', type=int, default=20, help='Cells in series (default: 20)')
    parser.add_argument('--drop-at', type=float, help='Lose connection at this minute')
    parser.add_argument('--drop-seconds', type=int, default=45, help='Connection drop length (default: 45)')
    parser.add_argument('--charge-at', type=float, help='Stop to charge at this minute')
    parser.add_argument('--charge-minutes', type=int, default=10, help='Charging stop length (default: 10)')
    parser.add_argument(
        '--speed',
        choices=['normal', 'fast', 'instant'],
        default='fast',
        help='Simulation speed: normal (1x), fast (10x), instant (no pacing)'
    )
    parser.add_argument('--local', action='store_true', help='Run the estimator in-process instead of posting')

    args = parser.parse_args()

    speed_map = {
        'normal': 1.0,
        'fast': 10.0,
        'instant': None,
    }

    simulator = RideSimulator(
        server_url=args.url,
        duration_minutes=args.duration,
        start_battery=args.battery,
        cruise_speed=args.cruise,
        battery_capacity_wh=args.capacity,
        cell_count=args.cells,
        drop_at_minute=args.drop_at,
        drop_seconds=args.drop_seconds,
        charge_at_minute=args.charge_at,
        charge_minutes=args.charge_minutes,
    )

    if args.local:
        simulator.run_local()
        return

    # Check server connectivity
    try:
        response = requests.get(f"{args.url}/api/range/config", timeout=5)
        if response.status_code != 200:
            print(f"Warning: Server returned status {response.status_code}")
    except requests.RequestException:
        print(f"Error: Cannot connect to server at {args.url}")
        print("Make sure the server is running with: python -m range_receiver.app")
        sys.exit(1)

    simulator.run(realtime_multiplier=speed_map[args.speed])


if __name__ == '__main__':
    main()
