"""
Módulo de Inventario

Libro de existencias por código de ítem y bitácora de movimientos:

- Ventas (CashBill, CreditBill) descuentan existencias, nunca por debajo de cero
- Notas crédito devuelven existencias
- Cada ítem se procesa por separado; un fallo no afecta a los demás
"""
