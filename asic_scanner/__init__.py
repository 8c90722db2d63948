"""
ASIC Miner Scanner - discover, poll and control mining devices across an
IPv4 range.

Example usage:
    # HTTP API
    asic-scanner

    # Programmatic usage
    from asic_scanner.services.address_range import parse_range
    from asic_scanner.services.identifier import DeviceIdentifier
    from asic_scanner.services.registry import LiveDeviceRegistry
    from asic_scanner.services.scanner import ScanCoordinator

    registry = LiveDeviceRegistry()
    coordinator = ScanCoordinator(DeviceIdentifier(), registry)
    handle = coordinator.start_sweep(parse_range("10.0.81.1", "10.0.81.254"))
    for record in handle.results():
        print(record.address, record.model)
"""

__version__ = "0.1.0"
