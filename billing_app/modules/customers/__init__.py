"""
Módulo de Clientes

Directorio de clientes compartido por todos los tipos de documento:
coincidencia por nombre, email o teléfono, fusión de datos de contacto y
registro de las empresas con las que el cliente ha facturado.
"""
