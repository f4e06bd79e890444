"""
Module data : rounds, échantillons et synchronisation DuckDB.
(Data module: rounds, samples and DuckDB synchronisation)

HOW IT WORKS:
1. domain/models : Validation Pydantic des échantillons bruts
2. sync : Pipeline échantillons → rounds → player_rounds (upsert idempotent)
3. query : Lectures DuckDB pour l'affluence, les prévisions et la progression
"""
