from secretroll.cli import main

raise SystemExit(main())
