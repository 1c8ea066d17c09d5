from climate_twin.protocols.azure_iot.azure_iot_device_2140 import (
    GLOBAL_DEVICE_ENDPOINT,
    AzureIoTProvisioner,
    AzureIoTSession,
)

__all__ = ["AzureIoTProvisioner", "AzureIoTSession", "GLOBAL_DEVICE_ENDPOINT"]
