"""
Pydantic models for fleet configuration.

Defaults declared here are what loader.py merges fleet.yml over; typed
access to all settings goes through FleetConfig.settings().
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from fleet.config.settings import (
    AUTO_PREFIX,
    BASE_PORT,
    BASE_VNC_PORT,
    DISPLAY_CONTAINER_PORT,
    MAIN_INSTANCE,
    MAX_INSTANCES,
    PORT_SCAN_RANGE,
    VNC_CONTAINER_PORT,
)


class FleetSection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    label: str = "mt5"
    max_instances: int = MAX_INSTANCES
    main_name: str = MAIN_INSTANCE
    auto_prefix: str = AUTO_PREFIX


class PortsConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    display_base: int = BASE_PORT
    vnc_base: int = BASE_VNC_PORT
    scan_range: int = PORT_SCAN_RANGE
    display_container_port: int = DISPLAY_CONTAINER_PORT
    vnc_container_port: int = VNC_CONTAINER_PORT


class MountsConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: str = "/home/mt5user/mt5data"
    logs: str = "/home/mt5user/logs"
    configs: str = "/home/mt5user/configs"


class RuntimeConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    image: str = "mt5-docker:latest"
    network: str = "clouddesk_mt5-network"
    restart_policy: str = "unless-stopped"
    stop_timeout: int = 10
    call_timeout: int = 30
    mounts: MountsConfig = MountsConfig()


class MonitorConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    interval: int = 30
    probe_timeout: int = 5
    grace_period: int = 120
    cpu_threshold: float = 80.0
    memory_threshold: float = 80.0
    service_port: int = DISPLAY_CONTAINER_PORT
    log_file: str = "logs/monitor.log"


class AlertsConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: str = ""
    webhook_url: str = ""
    smtp_host: str = "localhost"
    smtp_port: int = 25
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_starttls: bool = False
    sender: str = "fleet@localhost"
    timeout: int = 10
    failure_threshold: int = 3
    recovery_timeout: float = 300.0


class BackupConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    retention_days: int = 30
    interval_hours: float = 0
    topology_files: list[str] = ["docker-compose.yml", ".env", "fleet.yml"]


class RateLimitingConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: bool = True
    default_limit: str = "200/minute"
    admin_limit: str = "10/minute"


class SecurityConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    api_key: str = ""
    rate_limiting: RateLimitingConfig = RateLimitingConfig()


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    level: str = "INFO"


class FleetSettings(BaseModel):
    """Root settings model mirroring fleet.yml structure."""

    model_config = ConfigDict(extra="ignore")

    fleet: FleetSection = FleetSection()
    ports: PortsConfig = PortsConfig()
    runtime: RuntimeConfig = RuntimeConfig()
    monitor: MonitorConfig = MonitorConfig()
    alerts: AlertsConfig = AlertsConfig()
    backup: BackupConfig = BackupConfig()
    security: SecurityConfig = SecurityConfig()
    logging: LoggingConfig = LoggingConfig()
