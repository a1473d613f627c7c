"""
Módulo de email: transporte SMTP para el envío de documentos.
"""
