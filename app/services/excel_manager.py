"""
Excel Register Export with Concurrency Control

Writes the IRD sales and purchase registers to ``.xlsx`` workbooks under
the configured data directory. Each register file is guarded by its own
``FileLock`` so a scheduled export and an on-demand export never write
the same workbook at once.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import pandas as pd
from filelock import FileLock, Timeout

from app.core.config import get_settings

logger = logging.getLogger(__name__)


class ExcelManager:
    """Lock-guarded Excel writer for IRD registers."""

    SALES_REGISTER_COLUMNS = [
        "invoice_number",
        "date_bs",
        "date_ad",
        "buyer_name",
        "buyer_pan",
        "subtotal",
        "discount",
        "taxable_amount",
        "vat_amount",
        "exempt_amount",
        "total_amount",
        "status",
        "cbms_synced",
    ]

    PURCHASE_REGISTER_COLUMNS = [
        "purchase_number",
        "date_bs",
        "date_ad",
        "vendor_name",
        "vendor_pan",
        "vendor_bill_number",
        "taxable_amount",
        "vat_amount",
        "total_amount",
        "status",
    ]

    @staticmethod
    def data_dir() -> Path:
        return Path(get_settings().data_directory)

    @classmethod
    def _ensure_data_dir(cls) -> Path:
        directory = cls.data_dir()
        if not directory.exists():
            directory.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {directory}")
        return directory

    @classmethod
    def register_path(cls, kind: str, restaurant_slug: str, label: str) -> Path:
        """``sales_register_himalayan-kitchen_2081.082.xlsx``"""
        safe_label = label.replace("/", "-").replace(" ", "_")
        return cls.data_dir() / f"{kind}_register_{restaurant_slug}_{safe_label}.xlsx"

    @classmethod
    def _write(cls, path: Path, rows: list[dict[str, Any]], columns: list[str], totals: dict) -> dict[str, Any]:
        cls._ensure_data_dir()
        result = {
            "success": False,
            "message": "",
            "path": str(path),
            "rows": len(rows),
            "exported_at": None,
        }

        lock_timeout = get_settings().excel_lock_timeout
        try:
            lock = FileLock(f"{path}.lock", timeout=lock_timeout)

            with lock:
                logger.debug(f"Lock acquired for {path.name}")

                df = pd.DataFrame(rows, columns=columns)
                if rows and totals:
                    df = pd.concat([df, pd.DataFrame([totals], columns=columns)], ignore_index=True)
                df.to_excel(str(path), index=False, engine="openpyxl")

                export_time = datetime.now().isoformat()
                logger.info(f"📊 {path.name} exported ({len(rows)} rows)")

                result["success"] = True
                result["message"] = f"{len(rows)} rows exported to {path.name}"
                result["exported_at"] = export_time

            logger.debug(f"Lock released for {path.name}")

        except Timeout:
            result["message"] = f"Lock timeout ({lock_timeout}s)"
            logger.error(f"Lock timeout for {path.name}")

        except OSError as e:
            result["message"] = str(e)
            logger.exception(f"Error exporting {path.name}")

        return result

    @classmethod
    def export_sales_register(cls, restaurant_slug: str, label: str, register: dict) -> dict[str, Any]:
        """
        Export a sales register (as built by ``ReportService.sales_register``).

        A trailing TOTAL row carries the totals over active invoices.
        """
        summary = register.get("summary", {})
        totals = {
            "invoice_number": "TOTAL",
            "subtotal": summary.get("total_subtotal"),
            "discount": summary.get("total_discount"),
            "taxable_amount": summary.get("total_taxable"),
            "vat_amount": summary.get("total_vat"),
            "total_amount": summary.get("grand_total"),
        }
        path = cls.register_path("sales", restaurant_slug, label)
        return cls._write(path, register.get("entries", []), cls.SALES_REGISTER_COLUMNS, totals)

    @classmethod
    def export_purchase_register(cls, restaurant_slug: str, label: str, register: dict) -> dict[str, Any]:
        summary = register.get("summary", {})
        totals = {
            "purchase_number": "TOTAL",
            "taxable_amount": summary.get("total_taxable"),
            "vat_amount": summary.get("total_vat"),
            "total_amount": summary.get("grand_total"),
        }
        path = cls.register_path("purchase", restaurant_slug, label)
        return cls._write(path, register.get("entries", []), cls.PURCHASE_REGISTER_COLUMNS, totals)

    @classmethod
    def read_register(cls, path: Path) -> list[dict[str, Any]]:
        """Rows of an exported register, without the TOTAL row."""
        if not Path(path).exists():
            return []
        df = pd.read_excel(path, engine="openpyxl")
        first = df.columns[0]
        df = df[df[first] != "TOTAL"]
        return df.to_dict("records")
