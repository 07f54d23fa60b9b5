"""
Sales Register Verification Script

Checks an exported sales register workbook: invoice number format,
sequence gaps, duplicates and VAT arithmetic.
Run from project root: python scripts/verify.py data/sales_register_<slug>_<period>.xlsx
"""

import os
import sys
import argparse
from datetime import datetime

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pandas as pd

from app.services.invoice import find_sequence_gaps, validate_invoice_number

VAT_TOLERANCE = 0.05
REQUIRED_COLUMNS = ['invoice_number', 'date_bs', 'taxable_amount', 'vat_amount', 'total_amount', 'status']


def verify_register(path: str) -> bool:
    """Verify a sales register export. Returns True when no problems were found."""

    print("=" * 60)
    print("🔍 SALES REGISTER VERIFICATION")
    print("=" * 60)
    print(f"⏰ Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"📄 File: {path}")
    print("=" * 60)

    if not os.path.exists(path):
        print("\n❌ Register file not found!")
        print("   Export one first: POST /api/reports/ird/sales-register/export")
        return False

    try:
        df = pd.read_excel(path, engine='openpyxl')
    except (OSError, ValueError) as e:
        print(f"\n❌ Could not read workbook: {e}")
        return False

    df = df[df['invoice_number'] != 'TOTAL'] if 'invoice_number' in df.columns else df
    ok = True

    print(f"\n📊 STATISTICS:")
    print(f"   Invoices: {len(df)}")

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        print(f"\n❌ Missing Columns: {missing}")
        return False
    print(f"✅ All required columns present")

    numbers = df['invoice_number'].astype(str).tolist()
    malformed = [n for n in numbers if not validate_invoice_number(n)]
    if malformed:
        ok = False
        print(f"\n⚠️ {len(malformed)} malformed invoice numbers: {malformed[:5]}")
    else:
        print(f"✅ Invoice numbers well-formed")

    duplicates = df['invoice_number'].duplicated().sum()
    if duplicates > 0:
        ok = False
        print(f"⚠️ {duplicates} duplicate invoice numbers found!")
    else:
        print(f"✅ No duplicate invoice numbers")

    gaps = find_sequence_gaps([n for n in numbers if validate_invoice_number(n)])
    if gaps:
        ok = False
        print(f"⚠️ Sequence gaps: {gaps[:20]}")
    else:
        print(f"✅ No sequence gaps")

    active = df[df['status'] == 'ACTIVE']
    expected_vat = (active['taxable_amount'] * 0.13).round(2)
    bad_vat = active[(active['vat_amount'] - expected_vat).abs() > VAT_TOLERANCE]
    if len(bad_vat):
        ok = False
        print(f"⚠️ {len(bad_vat)} invoices with VAT not 13% of taxable: "
              f"{bad_vat['invoice_number'].tolist()[:5]}")
    else:
        print(f"✅ VAT is 13% of taxable amount on every active invoice")

    print(f"\n💰 TOTALS (active invoices):")
    print(f"   Taxable: Rs. {active['taxable_amount'].sum():.2f}")
    print(f"   VAT:     Rs. {active['vat_amount'].sum():.2f}")
    print(f"   Total:   Rs. {active['total_amount'].sum():.2f}")
    print(f"   Cancelled invoices: {int((df['status'] == 'CANCELLED').sum())}")

    print("\n" + "=" * 60)
    print("✅ VERIFICATION PASSED" if ok else "❌ VERIFICATION FOUND PROBLEMS")
    print("=" * 60)
    return ok


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Verify an exported IRD sales register")
    parser.add_argument("path", help="Path to the sales register .xlsx")
    args = parser.parse_args()
    sys.exit(0 if verify_register(args.path) else 1)
