from shopledger.services.ledger_service import get_current_stock


def test_cli_receive_order_and_report(app, make_product):
    product = make_product(title="Sencha", price=1000, cost_price=400)
    runner = app.test_cli_runner()

    received = runner.invoke(args=["stock", "receive", str(product.id), "5"])
    assert received.exit_code == 0, received.output
    assert "5 @ 400" in received.output

    ordered = runner.invoke(args=[
        "orders", "create",
        "--item", f"{product.id}:2",
        "--name", "Ivan",
        "--phone", "+79001112233",
    ])
    assert ordered.exit_code == 0, ordered.output
    assert "№00001/AS" in ordered.output
    assert get_current_stock(product.id) == 3

    report = runner.invoke(args=["reports", "stock"])
    assert report.exit_code == 0
    assert "Sencha" in report.output


def test_cli_reports_domain_errors_cleanly(app, make_product):
    product = make_product()
    runner = app.test_cli_runner()

    result = runner.invoke(args=["stock", "write-off", str(product.id), "1"])

    assert result.exit_code == 1
    assert "Error:" in result.output
    assert "Traceback" not in result.output


def test_cli_rejects_malformed_item(app, make_product):
    make_product()
    runner = app.test_cli_runner()

    result = runner.invoke(args=["orders", "create", "--item", "12", "--name", "A", "--phone", "1"])

    assert result.exit_code != 0
    assert "PRODUCT_ID:QTY" in result.output
