"""
stockflow_modules -- order workflows and the services that drive them.

Each subpackage pairs a ``workflows.py`` transition table with a
``service.py`` that enforces it:

    customer_orders  placement, multi-worker preparation, cancellation, debt
    supplier_orders  restock orders, partial acceptance, receipt into lots
    delivery         courier assignment, transit, hand-over and returns
"""
