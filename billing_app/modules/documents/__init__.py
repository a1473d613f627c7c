"""
Módulo de Documentos

Orquesta la creación de documentos de facturación numerados (facturas de
contado y crédito, notas crédito y débito, cotizaciones y recibos):
numeración, resolución de cliente, persistencia e inventario.

Componentes:
- schemas.py: sobre común y variantes por tipo de documento
- service.py: OrchestrationService
- router.py: Endpoints REST API
"""
