"""
Módulo de Secuencias

Numeración consecutiva de documentos por empresa y tipo:

- Contador por (prefijo, tipo) con actualización condicional por versión
- Siembra inicial desde los números de documentos históricos
- Reserva de números (invoice_numbers) contra duplicados explícitos
- IDs de cliente CUST-N con el mismo mecanismo
"""
