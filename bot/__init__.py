"""
Bot — Capa conversacional de Tecno Express.

Atiende a los clientes de la tienda por Telegram:
- Enruta cada mensaje al asistente de IA externo y ejecuta sus acciones
- Guía el registro de garantías paso a paso
- Cierra conversaciones inactivas y envía la encuesta de satisfacción
"""
