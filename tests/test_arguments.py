from shardstore.db.arguments import Arguments, page
from shardstore.db.sqlite import SQLiteBackend


class TestArguments:
    def test_numbered_placeholders(self):
        args = Arguments("seed")
        assert args.add("x").number() == "$2"
        assert args.add_many("a", "b") == "($3, $4)"
        assert args.args() == ("seed", "x", "a", "b")
        assert len(args) == 4

    def test_add_many_without_values(self):
        args = Arguments()
        assert args.add_many() == ""
        assert args.args() == ()

    def test_multi_row_insert(self, tmp_path):
        backend = SQLiteBackend(str(tmp_path / "a.db"))
        args = Arguments(placeholder=backend.get_placeholder)
        values = ", ".join(args.add_many(i, f"user{i}") for i in range(2))
        assert values == "(?, ?), (?, ?)"
        assert args.args() == (0, "user0", 1, "user1")


class TestPage:
    def test_first_page(self):
        assert page(20, 1) == (0, 20)

    def test_later_page(self):
        assert page(20, 3) == (40, 20)

    def test_zero_and_negative_mean_first_page(self):
        assert page(10, 0) == (0, 10)
        assert page(10, -4) == (0, 10)
