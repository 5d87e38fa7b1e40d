"""
Li-Ion Discharge Curve

Converts pack voltage to energy percentage (state of charge) with a
three-segment piecewise-linear model of typical Li-Ion cell behavior:
- Flat region: 100% - 80% (4.20V - 3.95V per cell)
- Gradual region: 80% - 20% (3.95V - 3.50V per cell)
- Rapid drop: 20% - 0% (3.50V - 3.00V per cell)

A single linear ramp from 3.00V to 4.20V misreads state of charge by 10-20%
in the middle of the pack, so the three slopes must stay distinct.
"""

from typing import Tuple

from .constants import (
    CELL_VOLTAGE_FLAT_END,
    CELL_VOLTAGE_GRADUAL_END,
    CELL_VOLTAGE_MAX,
    CELL_VOLTAGE_MIN,
    CELL_VOLTAGE_VALIDITY_MARGIN,
    ENERGY_PERCENT_FLAT_END,
    ENERGY_PERCENT_GRADUAL_END,
)


def voltage_to_energy_percent(pack_voltage: float, cell_count: int) -> float:
    """
    Convert pack voltage to energy percentage.

    Args:
        pack_voltage: Total pack voltage in volts (e.g., 75.6V for a 20S pack)
        cell_count: Number of cells in series (e.g., 20 for a 20S pack)

    Returns:
        Energy percentage (0.0 to 100.0)

    Examples:
        >>> voltage_to_energy_percent(84.0, 20)
        100.0
        >>> voltage_to_energy_percent(79.0, 20)
        80.0
        >>> voltage_to_energy_percent(60.0, 20)
        0.0
    """
    cell_voltage = pack_voltage / cell_count

    if cell_voltage >= CELL_VOLTAGE_MAX:
        return 100.0

    if cell_voltage <= CELL_VOLTAGE_MIN:
        return 0.0

    # Flat region: 100% - 80%
    if cell_voltage > CELL_VOLTAGE_FLAT_END:
        voltage_range = CELL_VOLTAGE_MAX - CELL_VOLTAGE_FLAT_END
        position = cell_voltage - CELL_VOLTAGE_FLAT_END
        return ENERGY_PERCENT_FLAT_END + (position / voltage_range) * (100.0 - ENERGY_PERCENT_FLAT_END)

    # Gradual region: 80% - 20%
    if cell_voltage > CELL_VOLTAGE_GRADUAL_END:
        voltage_range = CELL_VOLTAGE_FLAT_END - CELL_VOLTAGE_GRADUAL_END
        position = cell_voltage - CELL_VOLTAGE_GRADUAL_END
        span = ENERGY_PERCENT_FLAT_END - ENERGY_PERCENT_GRADUAL_END
        return ENERGY_PERCENT_GRADUAL_END + (position / voltage_range) * span

    # Rapid drop region: 20% - 0%
    voltage_range = CELL_VOLTAGE_GRADUAL_END - CELL_VOLTAGE_MIN
    position = cell_voltage - CELL_VOLTAGE_MIN
    return max(0.0, (position / voltage_range) * ENERGY_PERCENT_GRADUAL_END)


def energy_percent_to_voltage(energy_percent: float, cell_count: int) -> float:
    """
    Convert energy percentage to pack voltage (inverse of voltage_to_energy_percent).

    Args:
        energy_percent: Energy percentage (0.0 to 100.0)
        cell_count: Number of cells in series

    Returns:
        Pack voltage in volts

    Examples:
        >>> energy_percent_to_voltage(100.0, 20)
        84.0
        >>> round(energy_percent_to_voltage(20.0, 20), 2)
        70.0
    """
    if energy_percent >= 100.0:
        cell_voltage = CELL_VOLTAGE_MAX
    elif energy_percent <= 0.0:
        cell_voltage = CELL_VOLTAGE_MIN
    elif energy_percent > ENERGY_PERCENT_FLAT_END:
        ratio = (energy_percent - ENERGY_PERCENT_FLAT_END) / (100.0 - ENERGY_PERCENT_FLAT_END)
        cell_voltage = CELL_VOLTAGE_FLAT_END + ratio * (CELL_VOLTAGE_MAX - CELL_VOLTAGE_FLAT_END)
    elif energy_percent > ENERGY_PERCENT_GRADUAL_END:
        span = ENERGY_PERCENT_FLAT_END - ENERGY_PERCENT_GRADUAL_END
        ratio = (energy_percent - ENERGY_PERCENT_GRADUAL_END) / span
        cell_voltage = CELL_VOLTAGE_GRADUAL_END + ratio * (CELL_VOLTAGE_FLAT_END - CELL_VOLTAGE_GRADUAL_END)
    else:
        ratio = energy_percent / ENERGY_PERCENT_GRADUAL_END
        cell_voltage = CELL_VOLTAGE_MIN + ratio * (CELL_VOLTAGE_GRADUAL_END - CELL_VOLTAGE_MIN)

    return cell_voltage * cell_count


def get_voltage_range(cell_count: int) -> Tuple[float, float]:
    """
    Get the (empty, full) pack voltage for a cell count.

    Examples:
        >>> get_voltage_range(20)
        (60.0, 84.0)
    """
    return (CELL_VOLTAGE_MIN * cell_count, CELL_VOLTAGE_MAX * cell_count)


def is_voltage_valid(
    pack_voltage: float,
    cell_count: int,
    margin_per_cell: float = CELL_VOLTAGE_VALIDITY_MARGIN
) -> bool:
    """
    Check if a pack voltage is plausible for the cell count.

    Allows a margin around the 3.00V-4.20V cell range to tolerate sag and
    charge spikes.

    Examples:
        >>> is_voltage_valid(75.6, 20)
        True
        >>> is_voltage_valid(86.0, 20)
        False
    """
    cell_voltage = pack_voltage / cell_count
    return (CELL_VOLTAGE_MIN - margin_per_cell) <= cell_voltage <= (CELL_VOLTAGE_MAX + margin_per_cell)


def calculate_energy_consumed(
    start_voltage: float,
    end_voltage: float,
    cell_count: int
) -> float:
    """
    Calculate energy consumed between two voltage readings.

    A voltage increase (charging, compensation artifacts) never reads as
    negative consumption.

    Args:
        start_voltage: Starting pack voltage
        end_voltage: Ending pack voltage
        cell_count: Number of cells in series

    Returns:
        Energy consumed as percentage of capacity (0.0 to 100.0)

    Examples:
        >>> calculate_energy_consumed(84.0, 79.0, 20)
        20.0
        >>> calculate_energy_consumed(79.0, 84.0, 20)
        0.0
    """
    start_energy = voltage_to_energy_percent(start_voltage, cell_count)
    end_energy = voltage_to_energy_percent(end_voltage, cell_count)
    return max(0.0, start_energy - end_energy)
