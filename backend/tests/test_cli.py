"""CLI smoke tests through Flask's CLI runner."""

from stitchline.models import Sku, User


class TestCli:

    def test_system_init_creates_first_admin_once(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["system", "init", "--admin", "boss"])
        assert result.exit_code == 0, result.output
        assert "Created admin user: boss" in result.output

        result = runner.invoke(args=["system", "init"])
        assert "Admin already present: boss" in result.output
        assert db_session.query(User).count() == 1

    def test_sku_template_then_import(self, app, admin, db_session, tmp_path):
        runner = app.test_cli_runner()
        path = tmp_path / "skus.csv"

        result = runner.invoke(args=["skus", "template", str(path)])
        assert result.exit_code == 0, result.output

        with open(path, "a", encoding="utf-8") as fh:
            fh.write("ABC-001,Duplicate Kurta,Kurta,Cotton,L,Red,799,1.25\n")

        result = runner.invoke(args=["skus", "import-csv", str(path), "--actor", str(admin.user_id)])

        assert result.exit_code == 0, result.output
        assert "1 of 2 SKUs created, 1 failed" in result.output
        assert "row 2:" in result.output
        assert db_session.query(Sku).filter_by(sku="ABC-001").one().price_cents == 79900

    def test_import_requires_known_actor(self, app, db_session, tmp_path):
        path = tmp_path / "fabric.csv"
        path.write_text("SKU Code,Fabric Type,Meters Received\nAB-1,Cotton,10\n", encoding="utf-8")

        result = app.test_cli_runner().invoke(
            args=["imports", "confirm", "fabric-import", str(path), "--actor", "999"]
        )
        assert result.exit_code != 0
        assert "User 999 not found" in result.output

    def test_wip_report(self, app, stocked_sku):
        result = app.test_cli_runner().invoke(args=["reports", "wip"])
        assert result.exit_code == 0, result.output
        assert "AB-1" in result.output
        assert "warehouse" in result.output
