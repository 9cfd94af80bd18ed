"""Protocol core: errors, configuration, intents, ledger state, storage"""
