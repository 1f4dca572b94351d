"""access/ -- Command pipeline: resolve scope, mutate store, materialize, reload.

main.py is the only caller outside tests.
"""
