"""Configuration module for the provisioning adapter."""
from .settings import AppConfig, GraphConfig, ProvisioningBatchConfig, load_settings

__all__ = ["AppConfig", "GraphConfig", "ProvisioningBatchConfig", "load_settings"]
