"""
Schemas Pydantic
Progetto: Care Ledger (Gestionale Assistenza Domiciliare)

Contratti di richiesta/risposta dell'API.
"""
