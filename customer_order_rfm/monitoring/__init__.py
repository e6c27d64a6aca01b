"""Reporting exports for RFM results and purchase history."""

from .exports import (
    RFM_EXPORT_COLUMNS,
    export_rfm_profiles,
    export_sku_monthly_report,
)

__all__ = ["RFM_EXPORT_COLUMNS", "export_rfm_profiles", "export_sku_monthly_report"]
