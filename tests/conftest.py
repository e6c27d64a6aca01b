"""Shared fixtures: spreadsheet files shaped like the upstream exports."""

import pandas as pd
import pytest

ORDER_HEADERS = (
    "Número de Pedido",
    "Pedido Generado",
    "Cliente",
    "Correo electrónico del cliente",
    "Celular del cliente",
    "Ciudad",
    "Estado",
    "Usuario POS",
)


def order_line(order_id, date, name, email, status="Entregado", phone="", city="", pos_user=""):
    return dict(zip(ORDER_HEADERS, (order_id, date, name, email, phone, city, status, pos_user)))


def billing_line(order_id, total, sku="CAFE-01", quantity="1", description="Cafe"):
    return {
        "Pedido": order_id,
        "Total": total,
        "Codigo": sku,
        "Descripcion": description,
        "Cantidad": quantity,
    }


@pytest.fixture
def write_sheet(tmp_path):
    """Write rows to ``tmp_path/<name>`` as CSV or XLSX depending on the suffix."""

    def _write(name, rows):
        path = tmp_path / name
        frame = pd.DataFrame(rows).astype(str)
        if path.suffix == ".xlsx":
            frame.to_excel(path, index=False, engine="openpyxl")
        else:
            frame.to_csv(path, index=False)
        return path

    return _write


@pytest.fixture
def march_files(write_sheet):
    """Order report and billing detail for three customers in Q1 2024."""

    orders = write_sheet(
        "pedidos.xlsx",
        [
            order_line("0100", "05/01/2024 09:00", "Ana Pérez", "ana@example.com", city="Tegucigalpa", pos_user="pos1@example.com"),
            order_line("0101", "20/02/2024 15:30", "Ana Pérez", "ANA@example.com"),
            order_line("0102", "01/03/2024 11:00", "Beto Ruiz", "beto@example.com", pos_user="pos2@example.com"),
            order_line("0103", "02/03/2024 11:00", "Carla Díaz", "", phone="9999-1111"),
            order_line("0104", "03/03/2024 11:00", "Dora", "dora@example.com", status="Cancelado"),
            order_line("0102-I", "01/03/2024 11:00", "Beto Ruiz", "beto@example.com"),
            order_line("0105", "sin fecha", "Ema", "ema@example.com"),
        ],
    )
    billing = write_sheet(
        "facturas.xlsx",
        [
            billing_line("0100", "100.00", quantity="2"),
            billing_line("0100", "25.50", sku="TE-01", description="Te verde"),
            billing_line("0101", "40"),
            billing_line("0102", "L. 1,200.00", sku="PAN-01", description="Pan"),
            billing_line("0103", "15"),
            billing_line("9999", "500"),
        ],
    )
    return orders, billing


@pytest.fixture
def april_files(write_sheet):
    """A later export repeating one March order and adding two April ones."""

    orders = write_sheet(
        "pedidos_abril.xlsx",
        [
            order_line("0102", "01/03/2024 11:00", "Beto Ruiz", "beto@example.com"),
            order_line("0200", "02/04/2024 10:00", "Ana Pérez", "ana@example.com"),
            order_line("0201", "03/04/2024 10:00", "Fito", "fito@example.com"),
        ],
    )
    billing = write_sheet(
        "facturas_abril.xlsx",
        [
            billing_line("0102", "1200"),
            billing_line("0200", "60"),
            billing_line("0201", "30", sku="TE-01"),
        ],
    )
    return orders, billing
