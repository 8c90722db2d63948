"""Fleet overview figures."""
import math
from typing import Iterable, List, Optional

from asic_scanner.models.device import DeviceRecord


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def _finite(values) -> List[float]:
    return [v for v in values if v is not None and math.isfinite(v)]


def fleet_stats(records: Iterable[DeviceRecord]) -> dict:
    """Miner count, total/average hashrate, average temperature and efficiency."""
    records = list(records)
    hashrates = _finite(r.hashrate_ths for r in records)
    temps = _finite(r.temperature_avg_c for r in records)
    efficiencies = _finite(r.snapshot.efficiency_w_per_th for r in records)
    wattages = _finite(r.wattage_w for r in records)

    return {
        "miner_count": len(records),
        "total_hashrate_ths": sum(hashrates),
        "avg_hashrate_ths": _mean(hashrates),
        "avg_temperature_c": _mean(temps),
        "avg_efficiency_w_per_th": _mean(efficiencies),
        "total_wattage_w": sum(wattages),
        "mining_count": sum(1 for r in records if r.is_mining),
        "fault_light_count": sum(1 for r in records if r.fault_light),
    }
